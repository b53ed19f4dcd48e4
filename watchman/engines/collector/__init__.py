"""Collector engine — GitHub issue/comment collection without DB access."""

from watchman.engines.collector.collector import GitHubCollector, parse_datetime
from watchman.engines.collector.github_client import GitHubClient
from watchman.engines.collector.models import Comment, Issue, WatchedRepository

__all__ = [
    "Comment",
    "GitHubClient",
    "GitHubCollector",
    "Issue",
    "WatchedRepository",
    "parse_datetime",
]
