"""Event pipeline — RepoScan → IssueScan → CommentScan over a message bus."""

from watchman.pipeline.bus import InProcessBus
from watchman.pipeline.messages import (
    COMMENT_TOPIC,
    ISSUE_TOPIC,
    REPO_TOPIC,
    CommentScanMessage,
    IssueScanMessage,
    RepoScanMessage,
    decode,
)
from watchman.pipeline.stages import CommentScanStage, IssueScanStage, RepoScanStage, StartStage

__all__ = [
    "COMMENT_TOPIC",
    "ISSUE_TOPIC",
    "REPO_TOPIC",
    "CommentScanMessage",
    "CommentScanStage",
    "InProcessBus",
    "IssueScanMessage",
    "IssueScanStage",
    "RepoScanMessage",
    "RepoScanStage",
    "StartStage",
    "decode",
]
