"""Product image download and local blob storage."""

from __future__ import annotations

import secrets
import string
from pathlib import Path
from typing import Dict, Iterable, Optional
from urllib.parse import urlsplit

import httpx

from core.types import CanonicalProduct, ImageRef, slugify
from utils.logger import get_logger

logger = get_logger(__name__)

URL_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "mp4", "webm", "mov"}
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}
DEFAULT_EXTENSION = "jpg"


class LocalBlobStore:
    """Writes blobs under ``root`` and returns root-relative paths."""

    def __init__(self, root: str = "data/storage"):
        self.root = Path(root)

    def store(self, content: bytes, suggested_path: str) -> Optional[str]:
        target = self.root / suggested_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.warning(f"Could not store blob {suggested_path}: {exc}")
            return None
        return suggested_path


def guess_extension(url: str, content_type: Optional[str] = None) -> str:
    """Extension from the URL path, then from the MIME type, else jpg."""
    suffix = Path(urlsplit(url).path).suffix.lower().lstrip(".")
    if suffix in URL_EXTENSIONS:
        return suffix
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(mime, DEFAULT_EXTENSION)


def random_token(length: int = 8) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def build_filename(title: Optional[str], extension: str) -> str:
    return f"{slugify(title or '') or 'image'}-{random_token()}.{extension}"


class MediaDownloader:
    """
    Downloads product and colourway images into a blob store.

    Failures are per image: they are logged and the image keeps its source URL.
    """

    def __init__(
        self,
        blob_store,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.blob_store = blob_store
        self.timeout = timeout
        self._transport = transport

    def directory_for(self, product: CanonicalProduct) -> str:
        return f"products/{product.site_id or 'default'}/{slugify(product.external_id) or 'unknown'}"

    async def download(
        self, client: httpx.AsyncClient, url: str, directory: str, title: Optional[str]
    ) -> Optional[str]:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(f"Image download failed for {url}: {exc}")
            return None
        extension = guess_extension(url, response.headers.get("content-type"))
        return self.blob_store.store(response.content, f"{directory}/{build_filename(title, extension)}")

    def _all_images(self, product: CanonicalProduct) -> Iterable[ImageRef]:
        yield from product.images
        for colourway in product.variant_matrix or []:
            yield from colourway.images

    async def download_product_images(self, product: CanonicalProduct) -> int:
        """Set ``local_path`` on every image that downloads; returns the number stored."""
        directory = self.directory_for(product)
        stored: Dict[str, Optional[str]] = {}
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout), follow_redirects=True, transport=self._transport
        ) as client:
            for image in self._all_images(product):
                if image.local_path:
                    continue
                if image.url not in stored:
                    stored[image.url] = await self.download(client, image.url, directory, product.title)
                image.local_path = stored[image.url]
        count = sum(1 for path in stored.values() if path)
        logger.debug(f"Stored {count}/{len(stored)} image(s) for {product.external_id}")
        return count
