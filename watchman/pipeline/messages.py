"""Pipeline messages — what one stage hands to the next over the bus.

Each message carries everything the receiving stage needs (repository
watermark, issue metadata), so no stage re-fetches what its predecessor
already knew.
"""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from watchman.engines.collector.models import Comment, Issue, WatchedRepository
from watchman.exceptions import MessageDecodeError

REPO_TOPIC = "repo"
ISSUE_TOPIC = "issue"
COMMENT_TOPIC = "comment"


class PipelineMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    def encode(self) -> str:
        return self.model_dump_json()


class RepoScanMessage(PipelineMessage):
    repository: WatchedRepository


class IssueScanMessage(PipelineMessage):
    # repository.last_scanned_at is the cutoff the RepoScan stage applied.
    repository: WatchedRepository
    issue: Issue


class CommentScanMessage(PipelineMessage):
    repository: WatchedRepository
    issue: Issue
    comment: Comment


M = TypeVar("M", bound=PipelineMessage)


def decode(message_type: type[M], payload: str | bytes) -> M:
    """Parse *payload* as *message_type*, raising :class:`MessageDecodeError`."""
    try:
        return message_type.model_validate_json(payload)
    except ValidationError as exc:
        raise MessageDecodeError(
            f"invalid {message_type.__name__} payload: {exc.error_count()} error(s)"
        ) from exc
