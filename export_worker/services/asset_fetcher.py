"""Materializes a timeline's media assets into a job's scratch directory.

Only media that at least one element references is fetched. Downloads run
concurrently; the first failure cancels the rest and fails the job.
"""

import asyncio
import base64
import binascii
import hashlib
import logging
import mimetypes
import re
from pathlib import Path
from urllib.parse import unquote_to_bytes, urlparse

import httpx

from export_worker.exceptions import AssetMaterializationError, TransientAssetReferenceError
from export_worker.schemas.timeline import MediaAsset, TimelineDocument

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def safe_filename(media_id: str) -> str:
    """Filesystem-safe, collision-free name stem for a media id."""
    digest = hashlib.sha1(media_id.encode("utf-8")).hexdigest()[:8]
    return f"{UNSAFE_FILENAME_CHARS.sub('_', media_id) or 'asset'}-{digest}"


def guess_extension(locator_path: str, content_type: str | None) -> str:
    suffix = Path(locator_path).suffix
    if suffix and len(suffix) <= 6:
        return suffix.lower()
    if content_type:
        return mimetypes.guess_extension(content_type.split(";")[0].strip()) or ""
    return ""


def decode_data_uri(locator: str) -> tuple[bytes, str]:
    """Decode a ``data:`` URI into (payload, media type)."""
    header, sep, payload = locator[len("data:"):].partition(",")
    if not sep:
        raise ValueError("data URI has no payload separator")
    media_type = header.split(";")[0] or "text/plain"
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=True), media_type
    return unquote_to_bytes(payload), media_type


class AssetMaterializer:
    """Fetches assets to local files and returns ``{media_id: local path}``.

    An ``httpx.AsyncClient`` may be injected (tests use ``httpx.MockTransport``);
    otherwise one is opened for the duration of ``materialize``.
    """

    def __init__(
        self,
        dest_dir: str | Path,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 120.0,
    ):
        self.dest_dir = Path(dest_dir)
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def materialize(self, document: TimelineDocument) -> dict[str, str]:
        wanted: dict[str, MediaAsset] = {}
        for media_id in document.referenced_media_ids():
            asset = document.media_items.get(media_id)
            # Unknown or url-less media is reported as skipped by the compiler
            if asset is None or not asset.url:
                continue
            wanted[media_id] = asset

        if not wanted:
            return {}

        self.dest_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[ASSETS] Materializing {len(wanted)} asset(s) into {self.dest_dir}")

        if self.client is not None:
            return await self._fetch_all(self.client, wanted)
        async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
            return await self._fetch_all(client, wanted)

    async def _fetch_all(self, client: httpx.AsyncClient, wanted: dict[str, MediaAsset]) -> dict[str, str]:
        tasks = {
            asyncio.create_task(self.materialize_one(client, media_id, asset)): media_id
            for media_id, asset in wanted.items()
        }
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # Also reached when the job itself is cancelled
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            error = task.exception()
            if error is not None:
                logger.error(f"[ASSETS] Failed to materialize {tasks[task]}: {error}")
                raise error

        return {tasks[task]: str(task.result()) for task in done}

    async def materialize_one(self, client: httpx.AsyncClient, media_id: str, asset: MediaAsset) -> Path:
        locator = asset.url or ""
        scheme = urlparse(locator).scheme.lower()

        if scheme == "blob":
            logger.error(
                f"[ASSETS] Upstream contract violation: media {media_id} still has a transient blob: locator"
            )
            raise TransientAssetReferenceError(
                "Asset still references an in-browser blob: URL", media_id=media_id
            )
        if scheme == "data":
            return await self._write_data_uri(media_id, locator)
        if scheme in ("http", "https"):
            return await self._download(client, media_id, locator)
        raise AssetMaterializationError(f"Unsupported asset locator scheme '{scheme}'", media_id=media_id)

    async def _write_data_uri(self, media_id: str, locator: str) -> Path:
        try:
            payload, media_type = decode_data_uri(locator)
        except (ValueError, binascii.Error) as e:
            raise AssetMaterializationError(f"Malformed data URI: {e}", media_id=media_id) from e

        path = self.dest_dir / f"{safe_filename(media_id)}{guess_extension('', media_type)}"
        await asyncio.to_thread(path.write_bytes, payload)
        logger.debug(f"[ASSETS] Decoded data URI for {media_id} ({len(payload)} bytes)")
        return path

    async def _download(self, client: httpx.AsyncClient, media_id: str, url: str) -> Path:
        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise AssetMaterializationError(
                        f"Download returned HTTP {response.status_code}", media_id=media_id
                    )
                extension = guess_extension(urlparse(url).path, response.headers.get("content-type"))
                path = self.dest_dir / f"{safe_filename(media_id)}{extension}"
                size = 0
                with open(path, "wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as e:
            raise AssetMaterializationError(f"Download failed: {e}", media_id=media_id) from e

        logger.debug(f"[ASSETS] Downloaded {media_id} ({size} bytes) -> {path}")
        return path
