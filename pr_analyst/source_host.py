"""Source-hosting collaborators — fetch full file contents for added/deleted files.

Both implementations are best-effort: a missing file returns None, and the
orchestrator treats any failure as "diff only".
"""

from __future__ import annotations

import base64
import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, Protocol

import httpx

from pr_analyst.config import (
    GIT_SHOW_MAX_BYTES,
    GITHUB_API_BASE,
    GITHUB_TIMEOUT,
    GITHUB_USER_AGENT,
    LOCAL_BASE_REF,
    LOCAL_HEAD_REF,
)
from pr_analyst.errors import SourceHostError

logger = logging.getLogger(__name__)


class SourceHost(Protocol):
    """Anything that can return a file's content at a ref."""

    head_ref: str
    base_ref: Optional[str]

    def get_file_content(self, path: str, ref: Optional[str] = None) -> Optional[str]:
        ...


class GitHubSource:
    """Read file contents through the GitHub REST contents API."""

    def __init__(
        self,
        owner: str,
        repo: str,
        head_ref: str = "HEAD",
        base_ref: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.head_ref = head_ref
        self.base_ref = base_ref

        token = token if token is not None else os.getenv("GITHUB_TOKEN")
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": GITHUB_USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"token {token}"

        self._client = client or httpx.Client(
            base_url=GITHUB_API_BASE, headers=headers, timeout=GITHUB_TIMEOUT
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def get_file_content(self, path: str, ref: Optional[str] = None) -> Optional[str]:
        """Return the decoded file at ``ref`` (head by default), or None if absent.

        Raises:
            SourceHostError: On non-404 HTTP errors, transport failures or
                bodies that are not a contents-API payload
        """
        ref = ref or self.head_ref
        url = f"/repos/{self.owner}/{self.repo}/contents/{path}"
        try:
            resp = self._client.get(url, params={"ref": ref})
        except httpx.HTTPError as e:
            raise SourceHostError(f"GitHub request failed for {path}@{ref}: {e}") from e

        if resp.status_code == 404:
            logger.debug("GitHub: %s not found at %s", path, ref)
            return None
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceHostError(
                f"GitHub returned {resp.status_code} for {path}@{ref}: {resp.text[:200]}",
                status_code=resp.status_code,
            ) from e

        try:
            data = resp.json()
        except ValueError as e:
            raise SourceHostError(
                f"GitHub returned a non-JSON body for {path}@{ref}: {resp.text[:200]}",
                status_code=resp.status_code,
            ) from e

        # Directories come back as a list; only plain files carry content
        if not isinstance(data, dict) or data.get("type") != "file":
            return None
        content = data.get("content")
        if not content:
            return None
        if data.get("encoding", "base64") != "base64":
            return content
        try:
            raw = base64.b64decode(content)
        except ValueError as e:
            raise SourceHostError(f"Undecodable content for {path}@{ref}: {e}") from e
        return raw.decode("utf-8", errors="replace")


class LocalGitSource:
    """Read file contents from a local checkout (working tree, then ``git show``)."""

    def __init__(
        self,
        repo_path: str | Path = ".",
        head_ref: str = LOCAL_HEAD_REF,
        base_ref: Optional[str] = LOCAL_BASE_REF,
    ) -> None:
        self.repo_path = Path(repo_path)
        self.head_ref = head_ref
        self.base_ref = base_ref

    def get_file_content(self, path: str, ref: Optional[str] = None) -> Optional[str]:
        # Uncommitted new files only exist in the working tree
        if ref is None or ref == self.head_ref:
            candidate = self.repo_path / path
            if candidate.is_file():
                try:
                    return candidate.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.debug("Could not read %s from working tree: %s", path, e)

        ref = ref or self.head_ref
        try:
            result = subprocess.run(
                ["git", "show", f"{ref}:{path}"],
                cwd=self.repo_path,
                capture_output=True,
                timeout=30,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SourceHostError(f"git show failed for {path}@{ref}: {e}") from e

        if result.returncode != 0:
            logger.debug("git show %s:%s exited %d", ref, path, result.returncode)
            return None
        return result.stdout[:GIT_SHOW_MAX_BYTES].decode("utf-8", errors="replace")
