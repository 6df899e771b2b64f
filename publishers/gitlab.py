"""
GitLab publisher: one Commits API call per batch.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Dict, List, Optional, Set
from urllib.parse import quote

import aiohttp

from staticgen.config import GitLabSettings
from staticgen.errors import PublishError
from staticgen.infra.http import HttpClient, HttpResponse
from staticgen.interfaces import ProgressSink

from .batch import BatchPublisher, Sleep, StagedFile, StopCheck


logger = logging.getLogger(__name__)

TREE_PAGE_SIZE = 100


class GitLabPublisher(BatchPublisher):
    """Pushes changed files to a GitLab project branch."""

    name = "GitLab"

    def __init__(
        self,
        settings: GitLabSettings,
        log: ProgressSink,
        http: Optional[HttpClient] = None,
        should_stop: Optional[StopCheck] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        super().__init__(log, settings.batch_size, settings.batch_delay, should_stop, sleep)
        if not settings.token or not settings.repo:
            raise PublishError("GitLab token and project path are required")
        self.settings = settings
        self.project = settings.repo.strip("/")
        self.project_id = quote(self.project, safe="")
        self.branch = settings.branch
        self.api = settings.api_url.rstrip("/")
        self.http = http or HttpClient()
        self.headers = {"PRIVATE-TOKEN": settings.token}
        self._branch_exists = True
        self._start_branch: Optional[str] = None
        self._existing: Set[str] = set()

    async def close(self) -> None:
        await self.http.close()

    def _project_url(self, path: str = "") -> str:
        url = f"{self.api}/projects/{self.project_id}"
        return f"{url}/{path}" if path else url

    async def _call(self, method: str, url: str, **kwargs) -> HttpResponse:
        try:
            return await self.http.request(method, url, headers=self.headers, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"GitLab request failed: {method} {url}: {e}") from e

    @staticmethod
    def _error(resp: HttpResponse, action: str) -> PublishError:
        data = resp.json()
        detail = None
        if isinstance(data, dict):
            detail = data.get("message") or data.get("error")
        return PublishError(f"{action}: {detail}" if detail else action, resp.status)

    # ---------------------------------------------- #
    # Project
    async def check_exists(self) -> bool:
        resp = await self._call("GET", self._project_url())
        if resp.status == 200:
            return True
        if resp.status == 404:
            return False
        raise self._error(resp, "Failed to check project")

    async def _namespace_id(self, namespace: str) -> Optional[int]:
        resp = await self._call("GET", f"{self.api}/namespaces", params={"search": namespace})
        if resp.status != 200:
            return None
        for item in resp.json() or []:
            if item.get("full_path") == namespace or item.get("path") == namespace:
                return item.get("id")
        return None

    async def create(self) -> None:
        namespace, _, name = self.project.rpartition("/")
        payload: Dict = {"name": name, "path": name, "visibility": "private"}
        if namespace:
            namespace_id = await self._namespace_id(namespace)
            if namespace_id is not None:
                payload["namespace_id"] = namespace_id
            else:
                logger.warning(f"Namespace {namespace} not found, creating project in the user namespace")

        resp = await self._call("POST", f"{self.api}/projects", json=payload)
        if resp.status != 201:
            raise self._error(resp, "Failed to create project")
        self.log.log(f"GitLab: created private project {self.project}")

    # ---------------------------------------------- #
    # Branch
    async def _has_branch(self, branch: str) -> bool:
        resp = await self._call("GET", self._project_url(f"repository/branches/{quote(branch, safe='')}"))
        if resp.status == 200:
            return True
        if resp.status == 404:
            return False
        raise self._error(resp, f"Failed to check branch {branch}")

    async def _default_branch(self) -> Optional[str]:
        resp = await self._call("GET", self._project_url())
        if resp.status != 200:
            return None
        return (resp.json() or {}).get("default_branch")

    async def prepare_branch(self, message: str) -> None:
        self._branch_exists = await self._has_branch(self.branch)
        if not self._branch_exists:
            self._start_branch = self.settings.base_branch or await self._default_branch()
            logger.info(f"Branch {self.branch} will be created from {self._start_branch or 'an empty tree'}")

    async def fetch_manifest(self) -> Optional[Dict[str, str]]:
        ref = self.branch if self._branch_exists else self._start_branch
        if not ref:
            return None

        manifest: Dict[str, str] = {}
        page = 1
        while True:
            resp = await self._call(
                "GET",
                self._project_url("repository/tree"),
                params={"ref": ref, "recursive": "true", "per_page": TREE_PAGE_SIZE, "page": page},
            )
            if resp.status == 404:
                return None if page == 1 else manifest
            if resp.status != 200:
                raise self._error(resp, "Failed to read repository tree")

            items = resp.json() or []
            for item in items:
                if item.get("type") == "blob":
                    manifest[item["path"]] = item["id"]

            total_pages = resp.header("x-total-pages")
            if total_pages and total_pages.isdigit() and page >= int(total_pages):
                break
            if len(items) < TREE_PAGE_SIZE:
                break
            page += 1

        self._existing = set(manifest)
        return manifest

    # ---------------------------------------------- #
    # Commit
    async def upload_batch(self, files: List[StagedFile], message: str) -> None:
        actions = [
            {
                "action": "update" if f.path in self._existing else "create",
                "file_path": f.path,
                "content": base64.b64encode(f.read()).decode(),
                "encoding": "base64",
            }
            for f in files
        ]
        payload: Dict = {"branch": self.branch, "commit_message": message, "actions": actions}
        if self._start_branch:
            payload["start_branch"] = self._start_branch

        resp = await self._call("POST", self._project_url("repository/commits"), json=payload)
        if resp.status != 201:
            raise self._error(resp, "Failed to create commit")

        # later batches commit on top of the branch this one created
        self._start_branch = None
        self._branch_exists = True
        self._existing.update(f.path for f in files)
        logger.info(f"Committed {len(files)} files to {self.project}@{self.branch}")
