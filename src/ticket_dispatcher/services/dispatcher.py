import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Optional

import httpx

from ticket_dispatcher.services.errors import BodyExtractionError
from ticket_dispatcher.services.metadata import (
    extract_issue_number,
    extract_sender_domain,
    is_whitelisted,
    passes_email_auth,
)
from ticket_dispatcher.services.mime_body import decode_body, header_value, read_message
from ticket_dispatcher.services.quote_folder import fold_quotes
from ticket_dispatcher.services.retry import RetryableHttpError

if TYPE_CHECKING:
    from ticket_dispatcher.config import Settings
    from ticket_dispatcher.services.github_client import GitHubClient

logger = logging.getLogger(__name__)

POSTED = "posted"
DUPLICATE = "duplicate"
LOGGED = "logged"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class DispatchResult:
    status: str
    message_id: str
    issue_number: Optional[int] = None
    reason: str = ""

    @property
    def processed(self) -> bool:
        return self.status in (POSTED, LOGGED)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_comment(from_header: str, body: str, discard_quotes: bool) -> str:
    body = body.replace("\r\n", "\n")
    return f"From: {from_header}\n\n" + fold_quotes(body, discard_quotes)


def _skip(message_id: str, reason: str, issue_number: Optional[int] = None) -> DispatchResult:
    logger.warning(
        "Skipping inbound message",
        extra={"event": "inbound_message_skipped", "message_id": message_id, "reason": reason},
    )
    return DispatchResult(status=SKIPPED, message_id=message_id, issue_number=issue_number, reason=reason)


async def dispatch_message(raw: bytes, settings: "Settings", github_client: "GitHubClient") -> DispatchResult:
    message = read_message(raw)
    headers = message.headers

    message_id = header_value(headers, "Message-ID").strip()
    to_header = header_value(headers, "To")
    cc_header = header_value(headers, "Cc")
    from_header = header_value(headers, "From")
    subject = header_value(headers, "Subject")

    if not message_id:
        return _skip(message_id, "missing_message_id")
    if not passes_email_auth(header_value(headers, "Authentication-Results")):
        return _skip(message_id, "authentication_failed")

    sender_domain = extract_sender_domain(from_header)
    if not is_whitelisted(sender_domain, settings.whitelist_domain):
        return _skip(message_id, "sender_not_whitelisted")

    issue_number = extract_issue_number(to_header, cc_header, settings.ticket_dispatcher_domain)
    if issue_number is None:
        return _skip(message_id, "no_issue_number")

    logger.info(
        "Dispatching inbound message",
        extra={
            "event": "inbound_message_received",
            "message_id": message_id,
            "issue_number": issue_number,
            "sender_domain": sender_domain,
            "subject": subject,
        },
    )

    try:
        body = decode_body(headers, message.body)
    except BodyExtractionError as exc:
        logger.error(
            "Failed to extract message body",
            extra={"event": "inbound_body_extraction_failed", "message_id": message_id, "error": repr(exc)},
        )
        return DispatchResult(status=FAILED, message_id=message_id, issue_number=issue_number, reason="body_extraction_failed")

    comment = build_comment(from_header, body, settings.discard_quotes)

    project = settings.github_owner_repo
    if project is None:
        logger.info(
            "GITHUB_PROJECT not set, not commenting",
            extra={"event": "inbound_comment_not_posted", "message_id": message_id, "issue_number": issue_number},
        )
        return DispatchResult(status=LOGGED, message_id=message_id, issue_number=issue_number)

    owner, repo = project
    try:
        created = await github_client.post_message_comment(owner, repo, issue_number, message_id, comment)
    except (httpx.HTTPError, RetryableHttpError, RuntimeError) as exc:
        logger.error(
            "Failed to post issue comment",
            extra={
                "event": "inbound_comment_failed",
                "message_id": message_id,
                "issue_number": issue_number,
                "error": repr(exc),
            },
        )
        return DispatchResult(status=FAILED, message_id=message_id, issue_number=issue_number, reason="comment_post_failed")

    if created is None:
        return DispatchResult(status=DUPLICATE, message_id=message_id, issue_number=issue_number)
    return DispatchResult(status=POSTED, message_id=message_id, issue_number=issue_number)
