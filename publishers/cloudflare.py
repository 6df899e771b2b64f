"""
Cloudflare Workers publisher: deploys the staged tree as Workers static assets.

Three phases: register the asset manifest, upload the buckets Cloudflare
asks for, then deploy a one-line worker bound to the uploaded assets.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

import aiohttp

from staticgen.config import CloudflareSettings
from staticgen.errors import PublishError
from staticgen.infra.http import HttpClient, HttpResponse
from staticgen.interfaces import ProgressSink, Publisher
from staticgen.models import PublishResult

from .batch import Sleep, relative_posix, walk_files


logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 25 * 1024 * 1024
MAX_FILE_COUNT = 20000
BUCKET_PAUSE = 0.5

WORKER_SCRIPT = """export default {
    async fetch(request, env) {
        return env.ASSETS.fetch(request);
    }
};
"""


class CloudflarePublisher(Publisher):
    """Uploads changed assets and redeploys the worker script."""

    name = "Cloudflare Workers"

    def __init__(
        self,
        settings: CloudflareSettings,
        log: ProgressSink,
        http: Optional[HttpClient] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        if not (settings.api_token and settings.account_id and settings.script_name):
            raise PublishError("Cloudflare API token, account id and script name are required")
        self.settings = settings
        self.log = log
        self.account = settings.account_id
        self.api = settings.api_url.rstrip("/")
        self.http = http or HttpClient()
        self._sleep = sleep

    async def close(self) -> None:
        await self.http.close()

    def _auth(self, token: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token or self.settings.api_token}"}

    def _script_url(self) -> str:
        return f"{self.api}/accounts/{self.account}/workers/scripts/{self.settings.script_name}"

    async def _call(self, method: str, url: str, **kwargs) -> HttpResponse:
        try:
            return await self.http.request(method, url, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"Cloudflare request failed: {method} {url}: {e}") from e

    @staticmethod
    def _error(resp: HttpResponse, action: str) -> PublishError:
        data = resp.json()
        detail = None
        if isinstance(data, dict) and data.get("errors"):
            detail = data["errors"][0].get("message")
        return PublishError(f"{action}: {detail}" if detail else action, resp.status)

    # ---------------------------------------------- #
    # Manifest
    def file_hash(self, content: bytes) -> str:
        return hashlib.sha256(self.account.encode() + content).hexdigest()[:32]

    def build_manifest(self, staging_root: Path) -> Dict[str, Dict]:
        """``{"/path": {"hash", "size", "source"}}`` for every deployable file."""
        root = Path(staging_root)
        files: Dict[str, Dict] = {}
        for path in walk_files(root):
            rel = "/" + relative_posix(path, root)
            size = path.stat().st_size
            if size > MAX_FILE_SIZE:
                self.log.log(f"Cloudflare: skipping {rel}, larger than 25 MiB ({size:,} bytes)", "warning")
                continue
            files[rel] = {"hash": self.file_hash(path.read_bytes()), "size": size, "source": path}

        if len(files) > MAX_FILE_COUNT:
            raise PublishError(f"Too many files for Workers assets: {len(files)} > {MAX_FILE_COUNT}")
        return files

    async def check_exists(self) -> bool:
        resp = await self._call("GET", self._script_url(), headers=self._auth())
        return resp.status == 200

    async def start_session(self, files: Dict[str, Dict]) -> Dict:
        manifest = {path: {"hash": info["hash"], "size": info["size"]} for path, info in files.items()}
        resp = await self._call(
            "POST",
            f"{self._script_url()}/assets-upload-session",
            headers=self._auth(),
            json={"manifest": manifest},
        )
        if resp.status not in (200, 201):
            raise self._error(resp, "Failed to start asset upload session")
        result = (resp.json() or {}).get("result") or {}
        if not result.get("jwt"):
            raise PublishError("Asset upload session returned no token")
        return {"jwt": result["jwt"], "buckets": result.get("buckets") or []}

    # ---------------------------------------------- #
    # Upload
    async def upload_buckets(self, files: Dict[str, Dict], buckets: List[List[str]], token: str) -> str:
        """Upload the requested buckets. Returns the completion token."""
        by_hash = {info["hash"]: info["source"] for info in files.values()}
        completion = token

        for index, bucket in enumerate(buckets):
            if index:
                await self._sleep(BUCKET_PAUSE)

            writer = aiohttp.MultipartWriter("form-data")
            for file_hash in bucket:
                source = by_hash.get(file_hash)
                if source is None:
                    self.log.log(f"Cloudflare: no file for requested hash {file_hash}", "warning")
                    continue
                part = writer.append(base64.b64encode(source.read_bytes()).decode())
                part.set_content_disposition("form-data", name=file_hash)

            resp = await self._call(
                "POST",
                f"{self.api}/accounts/{self.account}/workers/assets/upload",
                params={"base64": "true"},
                headers=self._auth(token),
                data=writer,
                max_retries=1,
            )
            if resp.status not in (200, 201, 202):
                raise self._error(resp, f"Asset upload failed for bucket {index + 1}/{len(buckets)}")

            data = resp.json() or {}
            completion = data.get("jwt") or (data.get("result") or {}).get("jwt") or completion
            self.log.log(f"Cloudflare: bucket {index + 1}/{len(buckets)} uploaded", "debug")

        if completion == token:
            logger.warning("No completion token received, deploying with the session token")
        return completion

    async def deploy(self, completion_token: str) -> None:
        metadata = {
            "main_module": "worker.js",
            "compatibility_date": date.today().isoformat(),
            "assets": {"jwt": completion_token},
        }
        writer = aiohttp.MultipartWriter("form-data")
        part = writer.append(json.dumps(metadata), {"Content-Type": "application/json"})
        part.set_content_disposition("form-data", name="metadata")
        part = writer.append(WORKER_SCRIPT, {"Content-Type": "application/javascript+module"})
        part.set_content_disposition("form-data", name="worker.js", filename="worker.js")

        resp = await self._call("PUT", self._script_url(), headers=self._auth(), data=writer, max_retries=1)
        if resp.status not in (200, 201):
            raise self._error(resp, "Worker deploy failed")

    async def publish(self, staging_root: Path, message: str) -> PublishResult:
        files = self.build_manifest(staging_root)
        if not await self.check_exists():
            self.log.log(f"Cloudflare: worker {self.settings.script_name} will be created")

        session = await self.start_session(files)
        buckets = session["buckets"]
        if buckets:
            completion = await self.upload_buckets(files, buckets, session["jwt"])
        else:
            self.log.log("Cloudflare: all assets already uploaded", "debug")
            completion = session["jwt"]

        await self.deploy(completion)
        uploaded = sum(len(b) for b in buckets)
        self.log.log(f"Cloudflare: deployed {len(files)} files ({uploaded} uploaded)")
        return PublishResult(
            publisher=self.name,
            uploaded=uploaded,
            skipped=max(0, len(files) - uploaded),
            batches=len(buckets),
        )
