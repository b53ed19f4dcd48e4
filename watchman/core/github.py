"""GitHub repository URL utilities."""

from __future__ import annotations

from urllib.parse import urlsplit

from watchman.exceptions import InvalidRepositoryReferenceError, UnsupportedHostError

GITHUB_HOST = "github.com"


def parse_repo_url(repo_url: str, *, host: str = GITHUB_HOST) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from a repository URL.

    The URL must resolve to exactly ``{host}/{owner}/{repo}``.  Handles:
      - https://github.com/owner/repo
      - https://github.com/owner/repo/
      - https://github.com/owner/repo.git
      - github.com/owner/repo (scheme omitted)

    Raises :class:`UnsupportedHostError` when the hostname is not *host*
    (case-insensitive) and :class:`InvalidRepositoryReferenceError` for any
    other shape.
    """
    raw = (repo_url or "").strip()
    if not raw:
        raise InvalidRepositoryReferenceError(repo_url)
    if "://" not in raw:
        raw = "https://" + raw

    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
    except ValueError as exc:
        raise InvalidRepositoryReferenceError(repo_url) from exc

    if not hostname:
        raise InvalidRepositoryReferenceError(repo_url)
    if hostname.lower() != host.lower():
        raise UnsupportedHostError(repo_url, hostname)

    segments = parts.path.strip("/").split("/")
    if len(segments) != 2 or not all(segments):
        raise InvalidRepositoryReferenceError(repo_url)

    owner, repo = segments
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not repo:
        raise InvalidRepositoryReferenceError(repo_url)
    return owner, repo


def canonical_repo_url(repo_url: str, *, host: str = GITHUB_HOST) -> str:
    """Return ``https://{host}/{owner}/{repo}`` for any accepted spelling."""
    owner, repo = parse_repo_url(repo_url, host=host)
    return f"https://{host}/{owner}/{repo}"
