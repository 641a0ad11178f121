"""Shared fakes: an in-memory WooCommerce catalog, a scripted renderer and profiles."""

from __future__ import annotations

import itertools
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from core.types import RenderedPage, RenderRequest, SiteProfile, slugify
from sync.woocommerce_client import WooCommerceClient
from utils.error_handling import RenderError

API_PREFIX = "/wp-json/wc/v3"
MEDIA_PATH = "/wp-json/wp/v2/media"


class FakeCatalog:
    """Stateful stand-in for the WooCommerce REST API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.products: Dict[int, Dict[str, Any]] = {}
        self.variations: Dict[int, Dict[int, Dict[str, Any]]] = {}
        self.categories: Dict[int, Dict[str, Any]] = {}
        self.attributes: Dict[int, Dict[str, Any]] = {}
        self.terms: Dict[int, Dict[int, Dict[str, Any]]] = {}
        self.media: Dict[int, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self._ids = itertools.count(100)

    # -- helpers ---------------------------------------------------------

    def calls(self, method: str, route: str) -> int:
        """Number of requests for ``method`` whose API route equals ``route``."""
        return sum(
            1
            for request in self.requests
            if request.method == method and self._route(request) == route
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def _route(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_PREFIX):] if path.startswith(API_PREFIX) else path

    @staticmethod
    def _page(items: List[Dict[str, Any]], request: httpx.Request) -> httpx.Response:
        per_page = int(request.url.params.get("per_page", 10))
        page = int(request.url.params.get("page", 1))
        start = (page - 1) * per_page
        return httpx.Response(200, json=items[start : start + per_page])

    def _new_id(self) -> int:
        return next(self._ids)

    def _attribute_name(self, attribute_id: int) -> str:
        return self.attributes.get(attribute_id, {}).get("name", str(attribute_id))

    # -- handler ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method = request.method
        route = self._route(request)

        for (fail_method, fail_route), status in self.failures.items():
            if method == fail_method and route == fail_route:
                return httpx.Response(status, json={"code": "fake_error", "message": "rejected"})

        if route == MEDIA_PATH and method == "POST":
            media_id = self._new_id()
            self.media[media_id] = {"id": media_id, "source_url": f"https://shop.test/uploads/{media_id}.jpg"}
            return httpx.Response(201, json=self.media[media_id])

        body = json.loads(request.content) if request.content else {}
        parts = route.strip("/").split("/")

        if parts[:2] == ["products", "categories"]:
            return self._categories(method, body, request)
        if parts[:2] == ["products", "attributes"]:
            return self._attributes(method, parts[2:], body, request)
        if parts[0] == "products":
            return self._products(method, parts[1:], body, request)
        return httpx.Response(404, json={"code": "rest_no_route"})

    def _categories(self, method: str, body: Dict[str, Any], request: httpx.Request) -> httpx.Response:
        if method == "GET":
            return self._page(list(self.categories.values()), request)
        category_id = self._new_id()
        self.categories[category_id] = {"id": category_id, "name": body["name"], "slug": slugify(body["name"])}
        return httpx.Response(201, json=self.categories[category_id])

    def _attributes(
        self, method: str, rest: List[str], body: Dict[str, Any], request: httpx.Request
    ) -> httpx.Response:
        if not rest:
            if method == "GET":
                return self._page(list(self.attributes.values()), request)
            slug = "pa_" + (body.get("slug") or slugify(body["name"]))
            if any(attribute["slug"] == slug for attribute in self.attributes.values()):
                return httpx.Response(400, json={"code": "woocommerce_rest_cannot_create", "message": "slug in use"})
            attribute_id = self._new_id()
            self.attributes[attribute_id] = {"id": attribute_id, "name": body["name"], "slug": slug}
            self.terms[attribute_id] = {}
            return httpx.Response(201, json=self.attributes[attribute_id])

        attribute_id = int(rest[0])
        terms = self.terms.setdefault(attribute_id, {})
        if method == "GET":
            return self._page(list(terms.values()), request)
        slug = body.get("slug") or slugify(body["name"])
        if any(term["slug"] == slug for term in terms.values()):
            return httpx.Response(400, json={"code": "term_exists", "message": "term exists"})
        term_id = self._new_id()
        terms[term_id] = {"id": term_id, "name": body["name"], "slug": slug}
        return httpx.Response(201, json=terms[term_id])

    def _products(
        self, method: str, rest: List[str], body: Dict[str, Any], request: httpx.Request
    ) -> httpx.Response:
        if not rest:
            product_id = self._new_id()
            self.products[product_id] = {"id": product_id, **body}
            self.variations[product_id] = {}
            return httpx.Response(201, json=self.products[product_id])

        product_id = int(rest[0])
        if product_id not in self.products:
            return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

        if len(rest) == 1:
            if method == "PUT":
                self.products[product_id].update(body)
            return httpx.Response(200, json=self.products[product_id])

        variations = self.variations[product_id]
        if len(rest) == 2:
            if method == "GET":
                return self._page(list(variations.values()), request)
            variation_id = self._new_id()
            variations[variation_id] = self._stored_variation(variation_id, body)
            return httpx.Response(201, json=variations[variation_id])

        variation_id = int(rest[2])
        variations[variation_id] = self._stored_variation(variation_id, {**variations[variation_id], **body})
        return httpx.Response(200, json=variations[variation_id])

    def _stored_variation(self, variation_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        attributes = [
            {**attribute, "name": attribute.get("name") or self._attribute_name(attribute.get("id"))}
            for attribute in body.get("attributes", [])
        ]
        return {**body, "id": variation_id, "attributes": attributes}


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def make_catalog_client(fake_catalog: FakeCatalog) -> Callable[..., WooCommerceClient]:
    def _make(**kwargs: Any) -> WooCommerceClient:
        options = {
            "base_url": "https://shop.test",
            "consumer_key": "ck_test",
            "consumer_secret": "cs_test",
            "transport": fake_catalog.transport(),
        }
        options.update(kwargs)
        return WooCommerceClient(**options)

    return _make


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep() -> SleepRecorder:
    return SleepRecorder()


class FakeRenderer:
    """Renderer protocol implementation answering from a url -> page map."""

    def __init__(self, pages: Optional[Dict[str, RenderedPage]] = None) -> None:
        self.pages = pages or {}
        self.requests: List[RenderRequest] = []

    async def render(self, request: RenderRequest) -> RenderedPage:
        self.requests.append(request)
        page = self.pages.get(request.url)
        if page is None:
            raise RenderError(f"No fixture page for {request.url}", {"url": request.url, "attempts": 1})
        return page


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def make_profile() -> Callable[..., SiteProfile]:
    def _make(**overrides: Any) -> SiteProfile:
        data: Dict[str, Any] = {
            "site_id": "demo",
            "name": "Demo Store",
            "base_url": "https://shop.example.com",
            "currency": "EUR",
            "listing": {
                "kind": "json_api",
                "seeds": ["https://api.example.com/wall?path=/w/sale"],
                "page_size": 24,
            },
        }
        data.update(overrides)
        return SiteProfile.model_validate(data)

    return _make
