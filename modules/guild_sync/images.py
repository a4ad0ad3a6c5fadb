"""Fetch guild banner images referenced by the spreadsheet image column."""

from __future__ import annotations

import asyncio
import io
import logging
import posixpath
import urllib.parse
from dataclasses import dataclass
from typing import Optional

from aiohttp import ClientError, ClientSession, ClientTimeout
from PIL import Image, UnidentifiedImageError

log = logging.getLogger("c1c.guild_sync.images")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")
_USER_AGENT = "guild-recruitment-sync/image-fetch"


@dataclass(frozen=True, slots=True)
class ImageAttachment:
    filename: str
    data: bytes
    content_type: str = ""


def looks_like_image_url(value: str | None) -> bool:
    """Cheap pre-check: http(s) URL whose path ends in an image extension."""

    text = (value or "").strip()
    if not text:
        return False
    parsed = urllib.parse.urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)


def filename_for(url: str, content_type: str = "") -> str:
    path = urllib.parse.urlparse(url).path
    name = posixpath.basename(path) or "image"
    if not name.lower().endswith(IMAGE_EXTENSIONS):
        subtype = content_type.split("/", 1)[-1].split(";", 1)[0].strip() or "png"
        name = f"{name}.{subtype}"
    return name


def _is_image_type(content_type: str) -> bool:
    return content_type.lower().startswith("image/")


def _verify_image(data: bytes) -> bool:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False
    return True


class ImageFetcher:
    """Download images with a content-type probe; every failure yields ``None``."""

    def __init__(self, *, timeout: float = 8.0, max_bytes: int = 8_000_000) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes

    async def fetch(self, url: str) -> Optional[ImageAttachment]:
        if not looks_like_image_url(url):
            log.info("image skipped; not an image url", extra={"url": url})
            return None
        try:
            return await self._download(url)
        except (ClientError, asyncio.TimeoutError) as exc:
            log.warning(
                "⚠️ **Image** — reason=fetch_failed • url=%s",
                url,
                extra={"url": url, "reason": "fetch_failed", "error": str(exc)},
            )
            return None

    async def _download(self, url: str) -> Optional[ImageAttachment]:
        timeout = ClientTimeout(total=self.timeout)
        headers = {"User-Agent": _USER_AGENT}
        async with ClientSession(timeout=timeout, headers=headers) as session:
            async with session.head(url, allow_redirects=True) as probe:
                probe_type = probe.headers.get("Content-Type", "")
                # Some CDNs reject HEAD; only a definite non-image answer stops us.
                if probe.status < 400 and probe_type and not _is_image_type(probe_type):
                    log.info(
                        "image skipped; content-type=%s",
                        probe_type,
                        extra={"url": url, "content_type": probe_type},
                    )
                    return None

            async with session.get(url) as resp:
                if resp.status != 200:
                    log.warning(
                        "⚠️ **Image** — reason=http_%s • url=%s",
                        resp.status,
                        url,
                        extra={"url": url, "status": resp.status},
                    )
                    return None
                content_type = resp.headers.get("Content-Type", "")
                if not _is_image_type(content_type):
                    log.info(
                        "image skipped; content-type=%s",
                        content_type,
                        extra={"url": url, "content_type": content_type},
                    )
                    return None
                length = resp.content_length
                if length and length > self.max_bytes:
                    log.warning("image too large", extra={"url": url, "bytes": length})
                    return None
                data = bytearray()
                async for chunk in resp.content.iter_chunked(65536):
                    data.extend(chunk)
                    if len(data) > self.max_bytes:
                        log.warning("image too large", extra={"url": url, "bytes": len(data)})
                        return None

        payload = bytes(data)
        if not _verify_image(payload):
            log.warning("image payload did not decode", extra={"url": url})
            return None
        return ImageAttachment(
            filename=filename_for(url, content_type),
            data=payload,
            content_type=content_type,
        )
