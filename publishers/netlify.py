"""
Netlify publisher: file-digest deploys.

Netlify answers a deploy request with the SHA-1 digests it does not have
yet; only those files are uploaded.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import aiohttp

from staticgen.config import NetlifySettings
from staticgen.errors import PublishError
from staticgen.infra.http import HttpClient, HttpResponse
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult

from .batch import relative_posix, walk_files


logger = logging.getLogger(__name__)


class NetlifyPublisher(Publisher):
    """Creates a deploy and uploads the files Netlify reports as required."""

    name = "Netlify"

    def __init__(self, settings: NetlifySettings, log: ProgressSink, http: Optional[HttpClient] = None):
        if not settings.api_token or not settings.site_id:
            raise PublishError("Netlify API token and site id are required")
        self.settings = settings
        self.log = log
        self.api = settings.api_url.rstrip("/")
        self.http = http or HttpClient()
        self.headers = {"Authorization": f"Bearer {settings.api_token}"}

    async def close(self) -> None:
        await self.http.close()

    async def _call(self, method: str, url: str, **kwargs) -> HttpResponse:
        headers = {**self.headers, **kwargs.pop("headers", {})}
        try:
            return await self.http.request(method, url, headers=headers, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"Netlify request failed: {method} {url}: {e}") from e

    @staticmethod
    def digests(staging_root: Path) -> Dict[str, Path]:
        """``{"/path": source}`` for every staged file."""
        root = Path(staging_root)
        return {"/" + relative_posix(p, root): p for p in walk_files(root)}

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        sources = self.digests(staging_root)
        files = {path: hashlib.sha1(src.read_bytes()).hexdigest() for path, src in sources.items()}

        resp = await self._call(
            "POST",
            f"{self.api}/sites/{self.settings.site_id}/deploys",
            json={"files": files, "title": message},
        )
        if resp.status not in (200, 201):
            data = resp.json()
            detail = data.get("message") if isinstance(data, dict) else None
            raise PublishError(f"Failed to create deploy: {detail}" if detail else "Failed to create deploy", resp.status)

        data = resp.json() or {}
        deploy_id = data.get("id")
        if not deploy_id:
            raise PublishError("Netlify returned no deploy id")
        required = set(data.get("required") or [])

        uploaded = 0
        failed = 0
        for path, digest in files.items():
            if digest not in required:
                continue
            resp = await self._call(
                "PUT",
                f"{self.api}/deploys/{deploy_id}/files{quote(path)}",
                headers={"Content-Type": "application/octet-stream"},
                data=sources[path].read_bytes(),
            )
            if resp.status == 200:
                uploaded += 1
            else:
                failed += 1
                self.log.log(f"Netlify: upload failed for {path} (Status: {resp.status})", "error")

        self.log.log(f"Netlify: deploy {deploy_id} - {uploaded} uploaded, {len(files) - uploaded - failed} unchanged")
        return PublishResult(
            publisher=self.name,
            uploaded=uploaded,
            skipped=len(files) - uploaded - failed,
            detail=f"deploy {deploy_id}",
        )
