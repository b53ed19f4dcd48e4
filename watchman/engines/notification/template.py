"""Alert rendering for issue and comment notifications."""

from __future__ import annotations

from typing import Any

from watchman.engines.collector.models import Comment, Issue, WatchedRepository
from watchman.interfaces import Alert

SUBJECT_PREFIX = "Possible security concern"
WEBHOOK_TITLE = "Watchman"
WEBHOOK_COLOR = "warning"


def render_alert(
    repository: WatchedRepository,
    issue: Issue,
    comment: Comment | None = None,
) -> Alert:
    """Return the alert for an issue body, or for one of its comments.

    The subject references the comment URL when a comment is given and the
    issue URL otherwise; the body is the corresponding text.
    """
    if comment is not None:
        url, text = comment.url, comment.body_text
    else:
        url, text = issue.url, issue.body_text
    return Alert(subject=f"{SUBJECT_PREFIX}: {url}", body=text)


def render_webhook_payload(alert: Alert) -> dict[str, Any]:
    """Chat-webhook message: subject as text, body as a single attachment."""
    return {
        "text": alert.subject,
        "attachments": [
            {
                "text": alert.body,
                "color": WEBHOOK_COLOR,
                "title": WEBHOOK_TITLE,
            }
        ],
    }


def render_email(alert: Alert) -> tuple[str, str]:
    """Return (subject, plain-text body) for an alert email."""
    body = f"{alert.body}\n\n-- \nThis is an automated notification from Watchman.\n"
    return f"[Watchman] {alert.subject}", body
