"""Tests for the idempotent catalog upsert."""

from datetime import datetime, timezone

import httpx
import pytest

from core.types import (
    CanonicalProduct,
    ColorwayVariant,
    ImageRef,
    ProductStatus,
    SizeVariant,
    SyncState,
    SyncStatus,
)
from sync.attribute_service import AttributeService
from sync.mapping_store import InMemorySyncMappingStore
from sync.pricing import MarkupPricing
from sync.sync_engine import SyncEngine, fallback_sku, map_status, remote_variation_key
from sync.woocommerce_client import WooCommerceClient

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def variable_product(**overrides):
    data = dict(
        external_id="FD2722",
        title="Pegasus 41 Running Shoes",
        site_id="demo",
        description="Road running shoe",
        slug="pegasus-41",
        price=99.99,
        status=ProductStatus.PUBLISHED,
        images=[ImageRef("https://cdn.example.com/hero.jpg", primary=True)],
        variant_matrix=[
            ColorwayVariant(
                colour_label="Black",
                base_price=99.99,
                images=[ImageRef("https://cdn.example.com/black.jpg")],
                size_variants=[
                    SizeVariant("42", sku="sku-42", stock_available=True),
                    SizeVariant("43", stock_available=False, price=89.99),
                ],
            ),
            ColorwayVariant(
                colour_label="White",
                base_price=79.99,
                size_variants=[SizeVariant("44", sku="sku-44", stock_available=True)],
            ),
        ],
        meta={"brand": "Nike"},
        source_url="https://shop.example.com/t/pegasus-41/FD2722",
    )
    data.update(overrides)
    return CanonicalProduct(**data)


def make_engine(client, store=None, **kwargs):
    return SyncEngine(
        client,
        AttributeService(client),
        store if store is not None else InMemorySyncMappingStore(),
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sync_twice_creates_once_then_updates(fake_catalog, make_catalog_client):
    store = InMemorySyncMappingStore()
    async with make_catalog_client() as client:
        engine = make_engine(client, store)
        first = await engine.sync(variable_product(), site_name="Demo Store")
        first_operation = first.last_payload_snapshot["operation"]
        first_remote_id = first.remote_product_id
        second = await engine.sync(variable_product(), site_name="Demo Store")

    assert fake_catalog.calls("POST", "/products") == 1
    assert fake_catalog.calls("PUT", f"/products/{first_remote_id}") == 1
    assert second.remote_product_id == first_remote_id
    assert first_operation == "create"
    assert second.last_payload_snapshot["operation"] == "update"
    assert second.state == SyncState.SYNCED
    assert second.last_sync_status == SyncStatus.SUCCESS
    assert second.last_synced_at == FIXED_NOW
    assert engine.stats["created"] == 1 and engine.stats["updated"] == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_variations_are_created_then_updated_in_place(fake_catalog, make_catalog_client):
    async with make_catalog_client() as client:
        engine = make_engine(client)
        first = await engine.sync(variable_product())
        remote_id = first.remote_product_id
        first_variations = dict(first.last_payload_snapshot["variations"])
        second = await engine.sync(variable_product())

    assert first_variations["created"] == 3
    assert second.last_payload_snapshot["variations"] == {
        "created": 0,
        "updated": 3,
        "failed": 0,
        "untouched": 0,
    }
    variations = list(fake_catalog.variations[remote_id].values())
    assert len(variations) == 3
    by_sku = {v["sku"]: v for v in variations}
    assert set(by_sku) == {"sku-42", "FD2722-BLA-43", "sku-44"}
    assert by_sku["FD2722-BLA-43"]["regular_price"] == "89.99"
    assert by_sku["FD2722-BLA-43"]["stock_status"] == "outofstock"
    assert by_sku["FD2722-BLA-43"]["stock_quantity"] == 0
    assert by_sku["sku-44"]["regular_price"] == "79.99"
    assert by_sku["sku-42"]["image"] == {"src": "https://cdn.example.com/black.jpg"}


@pytest.mark.asyncio
async def test_remote_only_variations_are_left_untouched(fake_catalog, make_catalog_client):
    async with make_catalog_client() as client:
        engine = make_engine(client)
        mapping = await engine.sync(variable_product())
        remote_id = mapping.remote_product_id
        await client.create_variation(
            remote_id, {"sku": "legacy", "attributes": [{"name": "Color", "option": "Red"}, {"name": "Size", "option": "S"}]}
        )
        again = await engine.sync(variable_product())

    assert again.last_payload_snapshot["variations"]["untouched"] == 1
    assert len(fake_catalog.variations[remote_id]) == 4


@pytest.mark.asyncio
async def test_remote_error_is_recorded_not_raised(fake_catalog, make_catalog_client):
    fake_catalog.failures[("POST", "/products")] = 400
    store = InMemorySyncMappingStore()
    async with make_catalog_client() as client:
        engine = make_engine(client, store)
        mapping = await engine.sync(variable_product())

    assert mapping.state == SyncState.FAILED
    assert mapping.last_sync_status == SyncStatus.FAILED
    assert mapping.remote_product_id is None
    snapshot = mapping.last_payload_snapshot
    assert snapshot["operation"] == "create"
    assert snapshot["status_code"] == 400
    assert "rejected" in snapshot["body"]
    assert "Traceback" in snapshot["trace"]
    assert store.get("demo", "FD2722") is mapping
    assert engine.stats["failed"] == 1


@pytest.mark.asyncio
async def test_maintenance_page_is_recorded_as_failure():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})
    )
    store = InMemorySyncMappingStore()
    async with WooCommerceClient("https://shop.test", "ck", "cs", transport=transport) as client:
        mapping = await make_engine(client, store).sync(variable_product(variant_matrix=None, images=[]))

    assert mapping.last_sync_status == SyncStatus.FAILED
    assert mapping.last_payload_snapshot["status_code"] == 200
    assert "maintenance" in mapping.last_payload_snapshot["body"]
    assert store.get("demo", "FD2722") is mapping


class ListReturningClient:
    async def create_product(self, payload):
        return [{"id": 1}]


@pytest.mark.asyncio
async def test_unexpected_response_shape_is_recorded_as_failure():
    product = variable_product(variant_matrix=None, images=[])
    mapping = await make_engine(ListReturningClient()).sync(product)

    assert mapping.state == SyncState.FAILED
    assert mapping.last_sync_status == SyncStatus.FAILED
    assert mapping.last_payload_snapshot["operation"] == "create"

@pytest.mark.asyncio
async def test_failed_variation_does_not_fail_the_product(fake_catalog, make_catalog_client):
    async with make_catalog_client() as client:
        engine = make_engine(client)
        mapping = await engine.sync(variable_product())
        remote_id = mapping.remote_product_id
        fake_catalog.failures[("POST", f"/products/{remote_id}/variations")] = 500
        product = variable_product()
        product.variant_matrix[1].size_variants.append(SizeVariant("45", stock_available=True))
        again = await engine.sync(product)

    assert again.last_sync_status == SyncStatus.SUCCESS
    assert again.last_payload_snapshot["variations"]["failed"] == 1
    assert again.last_payload_snapshot["variations"]["updated"] == 3


@pytest.mark.asyncio
async def test_variable_payload_shape(fake_catalog, make_catalog_client):
    async with make_catalog_client() as client:
        engine = make_engine(client, default_category="Imports")
        product = variable_product(meta={"brand": "Nike", "description_translated": "Translated"})
        payload = await engine.build_payload(product, site_name="Demo Store")

    assert payload["type"] == "variable"
    assert payload["status"] == "publish"
    assert payload["sku"] == "FD2722"
    assert payload["manage_stock"] is False
    assert payload["description"] == "Translated"
    assert payload["weight"] == "0.75"
    assert [a["options"] for a in payload["attributes"]] == [["Black", "White"], ["42", "43", "44"]]
    assert payload["images"] == [{"src": "https://cdn.example.com/hero.jpg", "alt": "Pegasus 41 Running Shoes", "position": 0}]
    assert [c["name"] for c in fake_catalog.categories.values()] == ["Imports"]
    meta = {m["key"]: m["value"] for m in payload["meta_data"]}
    assert meta["weblink"] == "https://shop.example.com/t/pegasus-41/FD2722"
    assert "regular_price" not in payload


@pytest.mark.asyncio
async def test_simple_product_payload_with_markup_pricing(fake_catalog, make_catalog_client):
    product = CanonicalProduct(
        external_id="GC25",
        title="Gift Card",
        site_id="demo",
        price=100.0,
        status=ProductStatus.OUT_OF_STOCK,
        meta={"discount": "25"},
    )
    async with make_catalog_client() as client:
        engine = make_engine(client, pricing=MarkupPricing(rate=1000))
        payload = await engine.build_payload(product, site_name="Demo Store")
        await engine.build_payload(product, site_name="Demo Store")

    assert payload["type"] == "simple"
    assert payload["regular_price"] == "134000"
    assert payload["stock_status"] == "outofstock"
    assert payload["status"] == "publish"
    assert fake_catalog.calls("POST", "/products/categories") == 1


@pytest.mark.asyncio
async def test_local_images_are_uploaded_once(fake_catalog, make_catalog_client, tmp_path):
    (tmp_path / "products").mkdir()
    (tmp_path / "products" / "hero.jpg").write_bytes(b"jpeg")
    product = variable_product(
        images=[
            ImageRef("https://cdn.example.com/hero.jpg", local_path="products/hero.jpg"),
            ImageRef("https://cdn.example.com/gone.jpg", local_path="products/gone.jpg"),
        ]
    )
    product.variant_matrix[0].images = [ImageRef("https://cdn.example.com/hero.jpg", local_path="products/hero.jpg")]

    async with make_catalog_client() as client:
        engine = make_engine(client, storage_root=str(tmp_path))
        mapping = await engine.sync(product)

    images = mapping.last_payload_snapshot["payload"]["images"]
    media_id = next(iter(fake_catalog.media))
    assert images[0]["id"] == media_id
    assert images[1]["src"] == "https://cdn.example.com/gone.jpg"
    assert fake_catalog.calls("POST", "/wp-json/wp/v2/media") == 1
    black = [v for v in fake_catalog.variations[mapping.remote_product_id].values() if v["attributes"][0]["option"] == "Black"]
    assert all(v["image"] == {"id": media_id} for v in black)


def test_helpers():
    assert map_status(ProductStatus.OUT_OF_STOCK) == "publish"
    assert map_status("archived") == "private"
    assert map_status("unknown") == "draft"
    assert fallback_sku("FD2722", "black", "43") == "FD2722-BLA-43"
    assert remote_variation_key(
        {"attributes": [{"name": "pa_color", "option": "Black"}, {"name": "Size", "option": "M "}]}
    ) == "black|m"
    assert remote_variation_key({"attributes": [{"name": "Size", "option": "M"}]}) is None
