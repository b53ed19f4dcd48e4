"""GitHub collector — paginated issue and comment retrieval, no DB access."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import structlog

from watchman.core.github import GITHUB_HOST, parse_repo_url
from watchman.engines.collector.github_client import GitHubClient
from watchman.engines.collector.models import Comment, Issue
from watchman.exceptions import CollectionFailedError
from watchman.interfaces import Collector

log = structlog.get_logger("watchman.collector")

MAXIMUM_PAGE_SIZE = 100

ISSUES_QUERY = """\
query ($owner: String!, $repo: String!, $first: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    issues(first: $first, after: $cursor) {
      pageInfo {
        endCursor
        hasNextPage
      }
      nodes {
        url
        number
        bodyText
        updatedAt
      }
    }
  }
}"""

COMMENTS_QUERY = """\
query ($owner: String!, $repo: String!, $issueNumber: Int!, $first: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    issue(number: $issueNumber) {
      comments(first: $first, after: $cursor) {
        pageInfo {
          endCursor
          hasNextPage
        }
        nodes {
          url
          updatedAt
          bodyText
        }
      }
    }
  }
}"""

T = TypeVar("T", Issue, Comment)


class GitHubCollector(Collector):
    """Collects issues and comments through the GraphQL API.

    Every list operation walks all pages and returns one ordered list, or
    raises.  Nothing partial ever escapes: a failure on page *n* discards
    pages ``1..n-1`` as well.
    """

    def __init__(
        self,
        client: GitHubClient,
        *,
        page_size: int = MAXIMUM_PAGE_SIZE,
        host: str = GITHUB_HOST,
    ) -> None:
        if not 1 <= page_size <= MAXIMUM_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAXIMUM_PAGE_SIZE}")
        self._client = client
        self._page_size = page_size
        self._host = host

    async def list_issues(self, repository_url: str) -> list[Issue]:
        # Validation errors are raised as-is, not wrapped.
        owner, repo = parse_repo_url(repository_url, host=self._host)

        def _issue(node: dict[str, Any]) -> Issue:
            return Issue(
                owner=owner,
                repo=repo,
                number=int(node["number"]),
                url=node["url"],
                body_text=node.get("bodyText") or "",
                updated_at=parse_datetime(node["updatedAt"]),
            )

        issues = await self._collect(
            ISSUES_QUERY,
            {"owner": owner, "repo": repo},
            ("repository", "issues"),
            _issue,
            label=f"{owner}/{repo}",
        )
        log.debug("collector.issues", repository=f"{owner}/{repo}", count=len(issues))
        return issues

    async def list_comments(self, owner: str, repo: str, issue_number: int) -> list[Comment]:
        def _comment(node: dict[str, Any]) -> Comment:
            return Comment(
                owner=owner,
                repo=repo,
                issue_number=issue_number,
                url=node["url"],
                body_text=node.get("bodyText") or "",
                updated_at=parse_datetime(node["updatedAt"]),
            )

        comments = await self._collect(
            COMMENTS_QUERY,
            {"owner": owner, "repo": repo, "issueNumber": issue_number},
            ("repository", "issue", "comments"),
            _comment,
            label=f"{owner}/{repo}/issues/{issue_number}",
        )
        log.debug(
            "collector.comments",
            repository=f"{owner}/{repo}",
            issue_number=issue_number,
            count=len(comments),
        )
        return comments

    # ── pagination ────────────────────────────────────────────────────────

    async def _collect(
        self,
        query: str,
        variables: dict[str, Any],
        path: tuple[str, ...],
        build: Callable[[dict[str, Any]], T],
        *,
        label: str,
    ) -> list[T]:
        """Follow ``pageInfo.endCursor`` until ``hasNextPage`` is false.

        Items are deduplicated by URL, first occurrence wins, so an item that
        shifts across a page boundary between requests is reported once.
        """
        items: list[T] = []
        seen: set[str] = set()
        cursor: str | None = None
        page = 0

        while True:
            data = await self._client.query(
                query, {**variables, "first": self._page_size, "cursor": cursor}
            )
            try:
                connection = _walk(data, path)
                nodes = connection["nodes"] or []
                page_info = connection["pageInfo"]
                has_next = bool(page_info["hasNextPage"])
                end_cursor = page_info.get("endCursor")
                page_items = [build(node) for node in nodes if node is not None]
            except (KeyError, TypeError, ValueError) as exc:
                raise CollectionFailedError(
                    f"malformed response for {label} on page {page + 1}", exc
                ) from exc

            for item in page_items:
                if item.url in seen:
                    continue
                seen.add(item.url)
                items.append(item)

            page += 1
            if not has_next:
                return items
            if not end_cursor or end_cursor == cursor:
                raise CollectionFailedError(
                    f"malformed response for {label} on page {page}: "
                    "hasNextPage without a new endCursor"
                )
            cursor = end_cursor


def _walk(data: dict[str, Any], path: tuple[str, ...]) -> dict[str, Any]:
    node: Any = data
    for key in path:
        if not isinstance(node, dict) or node.get(key) is None:
            raise KeyError(f"missing {'.'.join(path)}: {key!r} is null or absent")
        node = node[key]
    return node


def parse_datetime(value: str) -> datetime:
    """Parse a GraphQL ``DateTime`` (ISO-8601, ``Z`` suffix) into aware UTC."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid datetime: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        raise ValueError(f"datetime without offset: {value!r}")
    return parsed
