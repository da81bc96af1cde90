import logging
from typing import Any, Optional

import httpx

from ticket_dispatcher.services.retry import RetryableHttpError, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

API_ROOT = "https://api.github.com"
COMMENTS_PER_PAGE = 100


def message_id_line(message_id: str) -> str:
    return f"Message-ID: {message_id}".strip()


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self.retry_policy = retry_policy or RetryPolicy()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.token:
            raise RuntimeError("GITHUB_TOKEN is required to talk to the GitHub API")
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "ticket-dispatcher",
        }

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        headers = self._headers()

        async def _call() -> httpx.Response:
            async with httpx.AsyncClient(timeout=20.0, transport=self._transport) as client:
                return await client.request(method, url, headers=headers, params=params, json=json_body)

        return await with_retry(operation=operation, call=_call, policy=self.retry_policy, logger=logger)

    async def list_issue_comments(self, owner: str, repo: str, issue_number: int) -> list[dict[str, Any]]:
        url = f"{API_ROOT}/repos/{owner}/{repo}/issues/{issue_number}/comments"
        comments: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                url,
                operation="github_list_issue_comments",
                params={"per_page": COMMENTS_PER_PAGE, "page": page},
            )
            batch = response.json()
            if not batch:
                return comments
            comments.extend(batch)
            page += 1

    async def comment_with_message_id_exists(self, owner: str, repo: str, issue_number: int, message_id: str) -> bool:
        needle = message_id_line(message_id)
        for comment in await self.list_issue_comments(owner, repo, issue_number):
            first_line = (comment.get("body") or "").split("\n", 1)[0]
            if first_line.strip() == needle:
                return True
        return False

    async def create_issue_comment(self, owner: str, repo: str, issue_number: int, body: str) -> dict[str, Any]:
        url = f"{API_ROOT}/repos/{owner}/{repo}/issues/{issue_number}/comments"
        response = await self._request("POST", url, operation="github_create_issue_comment", json_body={"body": body})
        logger.info(
            "Created GitHub issue comment",
            extra={
                "event": "github_comment_created",
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
            },
        )
        return response.json()

    async def post_message_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        message_id: str,
        body: str,
    ) -> Optional[dict[str, Any]]:
        """Post ``body`` under a Message-ID header line unless it was posted before.

        Returns None for a duplicate. When the duplicate check itself fails the
        comment is posted anyway.
        """
        try:
            exists = await self.comment_with_message_id_exists(owner, repo, issue_number, message_id)
        except (httpx.HTTPError, RetryableHttpError) as exc:
            logger.warning(
                "Could not check for an existing comment, posting anyway",
                extra={
                    "event": "github_duplicate_check_failed",
                    "issue_number": issue_number,
                    "message_id": message_id,
                    "error": repr(exc),
                },
            )
            exists = False

        if exists:
            logger.info(
                "Message already posted to issue",
                extra={"event": "github_comment_duplicate", "issue_number": issue_number, "message_id": message_id},
            )
            return None

        return await self.create_issue_comment(owner, repo, issue_number, message_id_line(message_id) + "\n" + body)
