import asyncio
import json

import httpx

from ticket_dispatcher.services.github_client import GitHubClient
from ticket_dispatcher.services.retry import RetryPolicy

COMMENTS_PATH = "/repos/octo/repo/issues/42/comments"


class _FakeGitHubApi:
    def __init__(self, pages: list[list[dict]] | None = None, list_status: int = 200) -> None:
        self.pages = pages or []
        self.list_status = list_status
        self.requests: list[httpx.Request] = []
        self.posted: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.url.path == COMMENTS_PATH
        assert request.headers["Authorization"] == "Bearer test-token"

        if request.method == "GET":
            if self.list_status != 200:
                return httpx.Response(self.list_status, json={"message": "Not Found"})
            page = int(request.url.params["page"])
            batch = self.pages[page - 1] if page <= len(self.pages) else []
            return httpx.Response(200, json=batch)

        payload = json.loads(request.content)
        self.posted.append(payload)
        return httpx.Response(201, json={"id": len(self.posted), "body": payload["body"]})


def _client(api: _FakeGitHubApi) -> GitHubClient:
    return GitHubClient(
        "test-token",
        retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0),
        transport=httpx.MockTransport(api),
    )


def test_post_message_comment_prefixes_message_id() -> None:
    api = _FakeGitHubApi()

    created = asyncio.run(_client(api).post_message_comment("octo", "repo", 42, "<m1@example.com>", "From: a\n\nhi"))

    assert created is not None
    assert api.posted == [{"body": "Message-ID: <m1@example.com>\nFrom: a\n\nhi"}]


def test_post_message_comment_skips_duplicates() -> None:
    api = _FakeGitHubApi(pages=[[{"body": "unrelated"}], [{"body": "Message-ID: <m1@example.com>\nFrom: a"}]])

    created = asyncio.run(_client(api).post_message_comment("octo", "repo", 42, "<m1@example.com>", "again"))

    assert created is None
    assert api.posted == []
    assert [request.url.params["page"] for request in api.requests] == ["1", "2"]


def test_message_id_must_be_on_first_line() -> None:
    api = _FakeGitHubApi(pages=[[{"body": "quoting\nMessage-ID: <m1@example.com>"}]])

    exists = asyncio.run(_client(api).comment_with_message_id_exists("octo", "repo", 42, "<m1@example.com>"))

    assert exists is False


def test_failed_duplicate_check_still_posts() -> None:
    api = _FakeGitHubApi(list_status=404)

    created = asyncio.run(_client(api).post_message_comment("octo", "repo", 42, "<m2@example.com>", "body"))

    assert created is not None
    assert len(api.posted) == 1


def test_list_comments_uses_page_size() -> None:
    api = _FakeGitHubApi(pages=[[{"body": "one"}, {"body": "two"}]])

    comments = asyncio.run(_client(api).list_issue_comments("octo", "repo", 42))

    assert [comment["body"] for comment in comments] == ["one", "two"]
    assert api.requests[0].url.params["per_page"] == "100"
