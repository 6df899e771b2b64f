"""
GitHub publisher: commits the staged tree through the Git Data API.

Each batch becomes blobs -> tree (on top of the previous tree) -> commit ->
fast-forward ref update. Blobs are created concurrently in small chunks and
the upload drops to one-at-a-time when GitHub pushes back.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Dict, List, Optional, Tuple

import aiohttp

from staticgen.config import GitHubSettings
from staticgen.errors import PublishError, RateLimitError
from staticgen.infra.http import HttpClient, HttpResponse
from staticgen.interfaces import ProgressSink

from .batch import BatchPublisher, Sleep, StagedFile, StopCheck, partition


logger = logging.getLogger(__name__)

BLOB_CHUNK_PAUSE = 0.5


class GitHubPublisher(BatchPublisher):
    """Pushes changed files to a GitHub repository branch."""

    name = "GitHub"

    def __init__(
        self,
        settings: GitHubSettings,
        log: ProgressSink,
        http: Optional[HttpClient] = None,
        should_stop: Optional[StopCheck] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        super().__init__(log, settings.batch_size, settings.batch_delay, should_stop, sleep)
        if not settings.token or not settings.repo:
            raise PublishError("GitHub token and repository are required")
        self.settings = settings
        self.repo = settings.repo.strip("/")
        self.branch = settings.branch
        self.api = settings.api_url.rstrip("/")
        self.http = http or HttpClient()
        self.headers = {
            "Authorization": f"token {settings.token}",
            "Accept": "application/vnd.github.v3+json",
        }
        self._head_sha: Optional[str] = None
        self._base_tree: Optional[str] = None

    async def close(self) -> None:
        await self.http.close()

    # ---------------------------------------------- #
    # Transport
    def _repo_url(self, path: str = "") -> str:
        url = f"{self.api}/repos/{self.repo}"
        return f"{url}/{path}" if path else url

    async def _call(self, method: str, url: str, **kwargs) -> HttpResponse:
        try:
            resp = await self.http.request(method, url, headers=self.headers, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"GitHub request failed: {method} {url}: {e}") from e
        if self._quota_exhausted(resp):
            raise RateLimitError("GitHub API rate limit exceeded", resp.status)
        return resp

    @staticmethod
    def _quota_exhausted(resp: HttpResponse) -> bool:
        """True only for a rejected (403/429) call with no quota left."""
        return resp.status in (403, 429) and resp.header("x-ratelimit-remaining") == "0"

    @staticmethod
    def _error(resp: HttpResponse, action: str) -> PublishError:
        data = resp.json()
        detail = data.get("message") if isinstance(data, dict) else None
        return PublishError(f"{action}: {detail}" if detail else action, resp.status)

    # ---------------------------------------------- #
    # Repository
    async def check_exists(self) -> bool:
        resp = await self._call("GET", self._repo_url())
        if resp.status == 200:
            return True
        if resp.status == 404:
            return False
        raise self._error(resp, "Failed to check repository")

    async def create(self) -> None:
        name = self.repo.split("/")[-1]
        resp = await self._call(
            "POST",
            f"{self.api}/user/repos",
            json={"name": name, "private": True, "auto_init": False},
        )
        if resp.status != 201:
            raise self._error(resp, "Failed to create repository")
        self.log.log(f"GitHub: created private repository {self.repo}")

    async def _default_branch(self) -> str:
        resp = await self._call("GET", self._repo_url())
        data = resp.json() if resp.status == 200 else None
        return (data or {}).get("default_branch") or "main"

    async def _is_empty(self) -> bool:
        resp = await self._call("GET", self._repo_url("contents"))
        return resp.status == 404

    # ---------------------------------------------- #
    # Branch
    async def _latest_commit(self, branch: str) -> Optional[Tuple[str, str]]:
        """``(commit_sha, tree_sha)`` of the branch head, or None if it does not exist."""
        resp = await self._call("GET", self._repo_url(f"git/refs/heads/{branch}"))
        if resp.status in (404, 409):
            return None
        if resp.status != 200:
            raise self._error(resp, f"Failed to read branch {branch}")
        commit_sha = resp.json()["object"]["sha"]

        resp = await self._call("GET", self._repo_url(f"git/commits/{commit_sha}"))
        if resp.status != 200:
            raise self._error(resp, f"Failed to read commit {commit_sha}")
        return commit_sha, resp.json()["tree"]["sha"]

    async def _bootstrap(self, message: str) -> None:
        resp = await self._call(
            "PUT",
            self._repo_url("contents/index.html"),
            json={
                "message": message,
                "content": base64.b64encode(b"").decode(),
                "branch": self.branch,
            },
        )
        if resp.status not in (200, 201):
            raise self._error(resp, "Failed to create initial commit")
        self.log.log(f"GitHub: empty repository initialised on {self.branch}")

    async def _create_ref(self, branch: str, sha: str) -> None:
        resp = await self._call(
            "POST",
            self._repo_url("git/refs"),
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        if resp.status != 201:
            raise self._error(resp, f"Failed to create branch {branch}")
        self.log.log(f"GitHub: created branch {branch}")

    async def prepare_branch(self, message: str) -> None:
        head = await self._latest_commit(self.branch)
        if head is None:
            if await self._is_empty():
                await self._bootstrap(message)
                head = await self._latest_commit(self.branch)
                if head is None:
                    raise PublishError(f"Branch {self.branch} not found after initial commit")
            else:
                base = self.settings.base_branch or await self._default_branch()
                head = await self._latest_commit(base)
                if head is None:
                    raise PublishError(f"Base branch not found: {base}")
                await self._create_ref(self.branch, head[0])
        self._head_sha, self._base_tree = head

    async def fetch_manifest(self) -> Optional[Dict[str, str]]:
        if not self._base_tree:
            return None
        resp = await self._call(
            "GET", self._repo_url(f"git/trees/{self._base_tree}"), params={"recursive": "1"}
        )
        if resp.status != 200:
            raise self._error(resp, "Failed to read repository tree")
        return {
            item["path"]: item["sha"]
            for item in resp.json().get("tree", [])
            if item.get("type") == "blob"
        }

    # ---------------------------------------------- #
    # Blobs
    async def create_blob(self, staged: StagedFile) -> str:
        payload = {"content": base64.b64encode(staged.read()).decode(), "encoding": "base64"}
        delays = list(self.settings.retry_delays) or [0]

        for attempt, delay in enumerate(delays, 1):
            try:
                resp = await self.http.request(
                    "POST",
                    self._repo_url("git/blobs"),
                    headers=self.headers,
                    json=payload,
                    max_retries=1,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt == len(delays):
                    raise PublishError(f"Blob upload failed for {staged.path}: {e}") from e
                logger.warning(f"Blob upload for {staged.path} failed (attempt {attempt}), retrying in {delay}s")
                await self._sleep(delay)
                continue

            if resp.status == 201:
                return resp.json()["sha"]
            if resp.status == 403 and "secondary rate limit" in resp.text.lower():
                raise RateLimitError("GitHub secondary rate limit", resp.status)
            if self._quota_exhausted(resp):
                raise RateLimitError("GitHub API rate limit exceeded", resp.status)
            if resp.status >= 500 and attempt < len(delays):
                logger.warning(f"Blob upload for {staged.path} returned {resp.status} (attempt {attempt}), retrying in {delay}s")
                await self._sleep(delay)
                continue
            raise self._error(resp, f"Blob upload failed for {staged.path}")

        raise PublishError(f"Blob upload failed for {staged.path}")

    async def create_blobs(self, files: List[StagedFile]) -> Dict[str, str]:
        """Create a blob per file, ``{path: blob_sha}``."""
        shas: Dict[str, str] = {}
        for index, chunk in enumerate(partition(files, self.settings.blob_concurrency)):
            if index:
                await self._sleep(BLOB_CHUNK_PAUSE)
            results = await asyncio.gather(*(self.create_blob(f) for f in chunk), return_exceptions=True)

            failure: Optional[PublishError] = None
            for staged, result in zip(chunk, results):
                if isinstance(result, PublishError):
                    failure = failure or result
                elif isinstance(result, BaseException):
                    raise result
                else:
                    shas[staged.path] = result

            if failure is not None:
                if isinstance(failure, RateLimitError):
                    self.log.log(
                        f"GitHub: rate limited, waiting {self.settings.rate_limit_cooldown}s "
                        f"before sequential upload",
                        "warning",
                    )
                    await self._sleep(self.settings.rate_limit_cooldown)
                else:
                    self.log.log(f"GitHub: parallel blob upload failed ({failure}), switching to sequential", "warning")
                break

        for staged in files:
            if staged.path not in shas:
                shas[staged.path] = await self.create_blob(staged)
        return shas

    # ---------------------------------------------- #
    # Commit
    async def upload_batch(self, files: List[StagedFile], message: str) -> None:
        shas = await self.create_blobs(files)

        tree_payload: Dict = {
            "tree": [
                {"path": f.path, "mode": "100644", "type": "blob", "sha": shas[f.path]}
                for f in files
            ]
        }
        if self._base_tree:
            tree_payload["base_tree"] = self._base_tree
        resp = await self._call("POST", self._repo_url("git/trees"), json=tree_payload)
        if resp.status != 201:
            raise self._error(resp, "Failed to create tree")
        tree_sha = resp.json()["sha"]

        parents = [self._head_sha] if self._head_sha else []
        resp = await self._call(
            "POST",
            self._repo_url("git/commits"),
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        if resp.status != 201:
            raise self._error(resp, "Failed to create commit")
        commit_sha = resp.json()["sha"]

        resp = await self._call(
            "PATCH",
            self._repo_url(f"git/refs/heads/{self.branch}"),
            json={"sha": commit_sha, "force": False},
        )
        if resp.status != 200:
            raise self._error(resp, f"Failed to update branch {self.branch}")

        self._head_sha, self._base_tree = commit_sha, tree_sha
        logger.info(f"Committed {len(files)} files to {self.repo}@{self.branch}: {commit_sha[:7]}")
