import asyncio
import io

from botocore.exceptions import ClientError

from ticket_dispatcher.config import Settings
from ticket_dispatcher.services.object_store import ObjectStore, ObjectStoreError, object_locations
from ticket_dispatcher.webhooks.s3_handler import handle_s3_event

RAW_MESSAGE = (
    b"Message-ID: <s3-message@example.com>\r\n"
    b"From: jane@example.com\r\n"
    b"To: 7@issues.example.com\r\n"
    b"Authentication-Results: mx; dkim=pass\r\n"
    b"Content-Type: text/plain\r\n"
    b"\r\n"
    b"Stored reply\r\n"
)


class _FakeObjectStore:
    def __init__(self, objects: dict[tuple[str, str], bytes]) -> None:
        self.objects = objects
        self.fetched: list[tuple[str, str]] = []

    async def fetch(self, bucket: str, key: str) -> bytes:
        self.fetched.append((bucket, key))
        if (bucket, key) not in self.objects:
            raise ObjectStoreError(f"missing s3://{bucket}/{key}")
        return self.objects[(bucket, key)]


class _FakeGitHubClient:
    def __init__(self) -> None:
        self.comments: list[tuple[int, str, str]] = []

    async def post_message_comment(self, owner: str, repo: str, issue_number: int, message_id: str, body: str):
        self.comments.append((issue_number, message_id, body))
        return {"id": 1}


class _FakeS3Client:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def get_object(self, Bucket: str, Key: str) -> dict:  # noqa: N803
        if self.error:
            raise self.error
        return {"Body": io.BytesIO(f"{Bucket}/{Key}".encode("utf-8"))}


def _settings() -> Settings:
    return Settings(
        ticket_dispatcher_domain="issues.example.com",
        whitelist_domain="example.com",
        github_project="octo/repo",
    )


def _event(*keys: str, bucket: str = "mail-bucket") -> dict:
    return {"Records": [{"s3": {"bucket": {"name": bucket}, "object": {"key": key}}} for key in keys]}


def test_s3_event_dispatches_each_record() -> None:
    store = _FakeObjectStore({("mail-bucket", "inbound/abc"): RAW_MESSAGE})
    github = _FakeGitHubClient()

    result = asyncio.run(handle_s3_event(_event("inbound/abc"), _settings(), store, github))

    assert result["processed"] == 1
    assert result["skipped"] == 0
    assert result["results"][0]["status"] == "posted"
    assert github.comments == [(7, "<s3-message@example.com>", "From: jane@example.com\n\nStored reply")]


def test_s3_event_skips_unreadable_objects_and_continues() -> None:
    store = _FakeObjectStore({("mail-bucket", "inbound/ok"): RAW_MESSAGE})
    github = _FakeGitHubClient()

    result = asyncio.run(handle_s3_event(_event("inbound/missing", "inbound/ok"), _settings(), store, github))

    assert result["processed"] == 1
    assert result["skipped"] == 1
    assert store.fetched == [("mail-bucket", "inbound/missing"), ("mail-bucket", "inbound/ok")]


def test_s3_event_skips_incomplete_records() -> None:
    store = _FakeObjectStore({})

    result = asyncio.run(handle_s3_event({"Records": [{"s3": {}}]}, _settings(), store, _FakeGitHubClient()))

    assert result == {"status": "ok", "processed": 0, "skipped": 1, "results": []}
    assert store.fetched == []


def test_object_locations_unquote_keys() -> None:
    assert object_locations(_event("inbound/a+b%40c")) == [("mail-bucket", "inbound/a b@c")]
    assert object_locations({}) == []


def test_object_store_reads_body() -> None:
    store = ObjectStore(client=_FakeS3Client())

    assert store.get_object_bytes("bucket", "key") == b"bucket/key"
    assert asyncio.run(store.fetch("bucket", "other")) == b"bucket/other"


def test_object_store_wraps_client_errors() -> None:
    error = ClientError({"Error": {"Code": "NoSuchKey", "Message": "gone"}}, "GetObject")
    store = ObjectStore(client=_FakeS3Client(error=error))

    try:
        store.get_object_bytes("bucket", "key")
    except ObjectStoreError as exc:
        assert "s3://bucket/key" in str(exc)
    else:
        raise AssertionError("expected ObjectStoreError")
