import logging
from typing import TYPE_CHECKING, Any

from ticket_dispatcher.services.dispatcher import dispatch_message
from ticket_dispatcher.services.object_store import ObjectStoreError, object_locations

if TYPE_CHECKING:
    from ticket_dispatcher.config import Settings
    from ticket_dispatcher.services.github_client import GitHubClient
    from ticket_dispatcher.services.object_store import ObjectStore

logger = logging.getLogger(__name__)


async def handle_s3_event(
    payload: dict[str, Any],
    settings: "Settings",
    object_store: "ObjectStore",
    github_client: "GitHubClient",
) -> dict[str, Any]:
    processed = 0
    skipped = 0
    results: list[dict[str, Any]] = []

    for bucket, key in object_locations(payload):
        if not bucket or not key:
            skipped += 1
            continue

        logger.info("Processing stored message", extra={"event": "s3_record_received", "bucket": bucket, "key": key})
        try:
            raw = await object_store.fetch(bucket, key)
        except ObjectStoreError as exc:
            logger.error(
                "Failed to fetch stored message",
                extra={"event": "s3_object_fetch_failed", "bucket": bucket, "key": key, "error": repr(exc)},
            )
            skipped += 1
            continue

        result = await dispatch_message(raw, settings, github_client)
        results.append({"key": key, **result.as_dict()})
        if result.processed:
            processed += 1
        else:
            skipped += 1

    return {"status": "ok", "processed": processed, "skipped": skipped, "results": results}
