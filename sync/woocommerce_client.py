"""
Async client for the WooCommerce REST API (``/wp-json/wc/v3``) plus the
WordPress media endpoint used for image uploads.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from core.types import slugify
from utils.error_handling import ConfigurationError, RemoteCatalogError, truncate_error_message
from utils.logger import get_logger

logger = get_logger(__name__)

PER_PAGE = 100
MAX_PAGES = 200


class WooCommerceClient:
    """
    Thin wrapper over the catalog REST API.

    Every non-2xx response raises ``RemoteCatalogError`` carrying the status
    code and body. Use as an async context manager.
    """

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        api_version: str = "wc/v3",
        wp_username: Optional[str] = None,
        wp_app_password: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        per_page: int = PER_PAGE,
        max_pages: int = MAX_PAGES,
    ):
        if not base_url:
            raise ConfigurationError("Catalog base URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.api_version = (api_version or "wc/v3").strip("/")
        self.auth = httpx.BasicAuth(consumer_key or "", consumer_secret or "")
        if wp_username and wp_app_password:
            self.media_auth = httpx.BasicAuth(wp_username, wp_app_password)
        else:
            self.media_auth = self.auth
        self.timeout = timeout
        self.per_page = per_page
        self.max_pages = max_pages
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    @property
    def api_root(self) -> str:
        return f"{self.base_url}/wp-json/{self.api_version}"

    @property
    def media_endpoint(self) -> str:
        return f"{self.base_url}/wp-json/wp/v2/media"

    async def __aenter__(self) -> "WooCommerceClient":
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self.client:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")
        return self.client

    @staticmethod
    def _check(response: httpx.Response, method: str, endpoint: str) -> Any:
        if 200 <= response.status_code < 300:
            if not response.content:
                return None
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, (dict, list)):
                return data
            body = response.text
            logger.error(
                f"Catalog API returned a non-JSON body: {method} {endpoint} "
                f"status={response.status_code} body={truncate_error_message(body, 500)}"
            )
            raise RemoteCatalogError(
                f"Catalog API returned an unexpected body on {method} {endpoint}",
                status_code=response.status_code,
                body=body,
                context={"method": method, "endpoint": endpoint},
            )
        body = response.text
        logger.error(
            f"Catalog API request failed: {method} {endpoint} "
            f"status={response.status_code} body={truncate_error_message(body, 500)}"
        )
        raise RemoteCatalogError(
            f"Catalog API error {response.status_code} on {method} {endpoint}",
            status_code=response.status_code,
            body=body,
            context={"method": method, "endpoint": endpoint},
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        client = self._require_client()
        try:
            response = await client.request(
                method, self.api_root + endpoint, params=params, json=json, auth=self.auth
            )
        except httpx.HTTPError as exc:
            raise RemoteCatalogError(
                f"Catalog API transport error on {method} {endpoint}: {exc}",
                context={"method": method, "endpoint": endpoint},
            ) from exc
        return self._check(response, method, endpoint)

    async def paginate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Collect every page until a short page, guarded at ``max_pages``."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"per_page": self.per_page, "page": page})
            data = await self.request("GET", endpoint, params=query) or []
            if not isinstance(data, list) or not data:
                break
            items.extend(data)
            if len(data) < self.per_page:
                break
            page += 1
            if page > self.max_pages:
                logger.warning(f"Pagination guard hit for {endpoint} after {self.max_pages} pages")
                break
        return items

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", "/products", json=payload)

    async def update_product(self, product_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", f"/products/{product_id}", json=payload)

    # ------------------------------------------------------------------
    # Variations
    # ------------------------------------------------------------------

    async def list_variations(self, product_id: int) -> List[Dict[str, Any]]:
        return await self.paginate(f"/products/{product_id}/variations")

    async def create_variation(self, product_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", f"/products/{product_id}/variations", json=payload)

    async def update_variation(
        self, product_id: int, variation_id: int, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self.request(
            "PUT", f"/products/{product_id}/variations/{variation_id}", json=payload
        )

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def list_categories(self) -> List[Dict[str, Any]]:
        return await self.paginate("/products/categories")

    async def get_category_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        wanted = name.strip().lower()
        for category in await self.list_categories():
            if str(category.get("name", "")).strip().lower() == wanted:
                return category
        return None

    async def create_category(self, name: str, parent_id: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": name}
        if parent_id is not None:
            payload["parent"] = parent_id
        return await self.request("POST", "/products/categories", json=payload)

    # ------------------------------------------------------------------
    # Attributes and terms
    # ------------------------------------------------------------------

    async def list_attributes(self) -> List[Dict[str, Any]]:
        return await self.paginate("/products/attributes")

    async def get_attribute_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        wanted = slug.strip().lower()
        for attribute in await self.list_attributes():
            remote = str(attribute.get("slug", "")).strip().lower()
            # wc stores global attribute slugs with a "pa_" prefix
            if remote == wanted or remote == f"pa_{wanted}":
                return attribute
        return None

    async def get_attribute_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        wanted = name.strip().lower()
        for attribute in await self.list_attributes():
            if str(attribute.get("name", "")).strip().lower() == wanted:
                return attribute
        return None

    async def create_attribute(self, name: str, **options: Any) -> Dict[str, Any]:
        payload = {"name": name, **options}
        return await self.request("POST", "/products/attributes", json=payload)

    async def list_terms(self, attribute_id: int) -> List[Dict[str, Any]]:
        return await self.paginate(f"/products/attributes/{attribute_id}/terms")

    async def get_term_by_slug(self, attribute_id: int, slug: str) -> Optional[Dict[str, Any]]:
        wanted = slug.strip().lower()
        for term in await self.list_terms(attribute_id):
            if str(term.get("slug", "")).strip().lower() == wanted:
                return term
        return None

    async def get_term_by_name(self, attribute_id: int, name: str) -> Optional[Dict[str, Any]]:
        wanted = name.strip().lower()
        for term in await self.list_terms(attribute_id):
            if str(term.get("name", "")).strip().lower() == wanted:
                return term
        return None

    async def create_term(self, attribute_id: int, name: str, slug: Optional[str] = None) -> Dict[str, Any]:
        payload = {"name": name, "slug": slug or slugify(name)}
        return await self.request("POST", f"/products/attributes/{attribute_id}/terms", json=payload)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def upload_media(self, local_path: str, alt_text: str = "") -> Dict[str, Any]:
        """
        Upload a local file to the WordPress media library.

        Uses the WordPress application password when configured, otherwise the
        consumer key pair. Returns ``{id, source_url, alt_text}``.
        """
        path = Path(local_path)
        if not path.is_file():
            raise RemoteCatalogError(
                f"Media file not found: {local_path}", context={"local_path": local_path}
            )
        mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        client = self._require_client()
        try:
            response = await client.post(
                self.media_endpoint,
                files={"file": (path.name, path.read_bytes(), mime_type)},
                data={"title": path.stem, "alt_text": alt_text},
                auth=self.media_auth,
            )
        except httpx.HTTPError as exc:
            raise RemoteCatalogError(
                f"Media upload transport error for {path.name}: {exc}",
                context={"local_path": local_path},
            ) from exc

        media = self._check(response, "POST", "/wp/v2/media") or {}
        if not isinstance(media, dict) or not media.get("id"):
            raise RemoteCatalogError(
                f"Media upload returned no id for {path.name}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.info(f"Uploaded {path.name} to media library as #{media['id']}")
        return {
            "id": media["id"],
            "source_url": media.get("source_url") or media.get("url"),
            "alt_text": media.get("alt_text") or alt_text,
        }
