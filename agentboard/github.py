import base64
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from agentboard.errors import RepositoryCommitError
from agentboard.logging import get_logger

log = get_logger(__name__)


class RepositoryCommitter(Protocol):
    def commit(self, owner: str, repo: str, path: str, content: str, message: str, branch: str) -> str:
        """Create or update ``path`` on ``branch`` and return the commit sha."""
        ...


@dataclass(frozen=True)
class GitHubConfig:
    token: str
    api_url: str = "https://api.github.com"
    timeout_seconds: float = 30.0


class GitHubCommitter:
    """
    Writes single files through the GitHub contents API. Existing files are
    updated in place using their current blob sha.
    """

    def __init__(self, config: GitHubConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.api_url.rstrip("/"),
            timeout=config.timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
            },
        )

    def close(self) -> None:
        self._client.close()

    def _existing_sha(self, owner: str, repo: str, path: str, branch: str) -> Optional[str]:
        resp = self._client.get(f"/repos/{owner}/{repo}/contents/{path}", params={"ref": branch})
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data: Any = resp.json()
        return data.get("sha") if isinstance(data, dict) else None

    def commit(self, owner: str, repo: str, path: str, content: str, message: str, branch: str) -> str:
        try:
            sha = self._existing_sha(owner, repo, path, branch)
            body = {
                "message": message,
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "branch": branch,
            }
            if sha:
                body["sha"] = sha
            resp = self._client.put(f"/repos/{owner}/{repo}/contents/{path}", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise RepositoryCommitError(
                f"Commit to {owner}/{repo}@{branch} failed: {exc}",
                metadata={"owner": owner, "repo": repo, "branch": branch, "path": path},
            ) from exc
        commit_sha = str((data.get("commit") or {}).get("sha", "")) if isinstance(data, dict) else ""
        log.info("repository_commit_created", extra={"repo": f"{owner}/{repo}", "branch": branch, "commit_sha": commit_sha})
        return commit_sha
