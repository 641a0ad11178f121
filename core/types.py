"""
Core data types for the catalog harvester.

Dataclasses describe the values that flow through the pipeline
(fetch results, the variant matrix, canonical products, sync mappings);
pydantic models describe configuration and the job record surfaced to callers.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict as PydanticConfigDict, Field, field_validator


# ============================================================================
# Aliases
# ============================================================================

URL = str
SiteId = str
ExternalId = str
Price = float
JSONValue = Any


# ============================================================================
# Enums
# ============================================================================


class ProductStatus(str, Enum):
    """Canonical product availability."""

    PUBLISHED = "published"
    OUT_OF_STOCK = "out_of_stock"


class SyncStatus(str, Enum):
    """Outcome of the last sync attempt for a product."""

    SUCCESS = "success"
    FAILED = "failed"


class SyncState(str, Enum):
    """Per-product sync state machine."""

    NEW = "new"
    EXISTING = "existing"
    CREATING = "creating"
    UPDATING = "updating"
    SYNCED = "synced"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Job execution status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ListingKind(str, Enum):
    """How a site exposes its category listing."""

    JSON_API = "json_api"
    RENDERED_HTML = "rendered_html"


# ============================================================================
# Pipeline values
# ============================================================================


def slugify(value: str) -> str:
    """Lower-case, collapse runs of non-alphanumerics to '-', trim dashes."""
    return re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one URL fetch; produced once, consumed once."""

    url: URL
    final_url: Optional[URL] = None
    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )

    def json(self) -> JSONValue:
        return json.loads(self.body or "null")


@dataclass
class ImageRef:
    url: URL
    alt_text: Optional[str] = None
    local_path: Optional[str] = None
    primary: bool = False


@dataclass
class SizeVariant:
    size: str
    sku: Optional[str] = None
    stock_available: bool = False
    price: Optional[Price] = None


@dataclass
class ColorwayVariant:
    colour_label: str
    colour_slug: str = ""
    swatch_url: Optional[URL] = None
    pdp_url: Optional[URL] = None
    base_price: Optional[Price] = None
    currency: Optional[str] = None
    discount_percentage: Optional[float] = None
    images: List[ImageRef] = field(default_factory=list)
    size_variants: List[SizeVariant] = field(default_factory=list)

    def __post_init__(self):
        if not self.colour_slug:
            self.colour_slug = slugify(self.colour_label)

    def resolve_price(self, size_variant: SizeVariant) -> Optional[Price]:
        """Explicit size price, then the colorway base price, else absent."""
        if size_variant.price is not None:
            return size_variant.price
        return self.base_price

    @property
    def has_stock(self) -> bool:
        return any(size.stock_available for size in self.size_variants)


VariantMatrix = List[ColorwayVariant]


@dataclass
class CanonicalProduct:
    external_id: ExternalId
    title: str
    site_id: SiteId = ""
    description: Optional[str] = None
    slug: Optional[str] = None
    price: Optional[Price] = None
    original_price: Optional[Price] = None
    currency: Optional[str] = None
    status: ProductStatus = ProductStatus.PUBLISHED
    images: List[ImageRef] = field(default_factory=list)
    variant_matrix: Optional[VariantMatrix] = None
    meta: Dict[str, str] = field(default_factory=dict)
    source_url: Optional[URL] = None

    @property
    def identity(self) -> tuple:
        return (self.site_id, self.external_id)

    @property
    def is_variable(self) -> bool:
        return bool(self.variant_matrix)

    def size_variant_count(self) -> int:
        return sum(len(c.size_variants) for c in self.variant_matrix or [])


@dataclass
class SyncMapping:
    site_id: SiteId
    external_id: ExternalId
    remote_product_id: Optional[int] = None
    last_sync_status: Optional[SyncStatus] = None
    last_synced_at: Optional[datetime] = None
    last_payload_snapshot: Dict[str, Any] = field(default_factory=dict)
    state: Optional[SyncState] = None


@dataclass
class RenderRequest:
    url: URL
    wait_selector: Optional[str] = None
    timeout: Optional[float] = None
    interactions: bool = False


@dataclass
class RenderedPage:
    url: URL
    html: str
    side_channel: Dict[str, JSONValue] = field(default_factory=dict)
    attempts: int = 1


@dataclass
class ExtractionContext:
    """Everything the extractor knows about a page besides its body."""

    url: URL
    site_id: SiteId = ""
    base_url: Optional[URL] = None
    currency: Optional[str] = None
    side_channel: Dict[str, JSONValue] = field(default_factory=dict)
    strategies: List[str] = field(default_factory=lambda: ["next_data", "side_channel", "html"])


# ============================================================================
# Collaborator protocols
# ============================================================================


@runtime_checkable
class Translator(Protocol):
    async def translate(self, text: str) -> str:
        ...


@runtime_checkable
class BlobStore(Protocol):
    def store(self, content: bytes, suggested_path: str) -> Optional[str]:
        ...


# ============================================================================
# Configuration and job models
# ============================================================================


class ListingConfig(BaseModel):
    """Listing/category pagination settings for one site."""

    kind: ListingKind = Field(ListingKind.JSON_API, description="Listing source type")
    seeds: List[str] = Field(default_factory=list, description="Category seed URLs")
    page_size: int = Field(24, ge=1, description="Items per listing page")
    anchor_param: str = Field("anchor", description="Offset query parameter")
    count_param: str = Field("sz", description="Item-count query parameter")
    count_selector: Optional[str] = Field(
        None, description="Selector holding the 'N of M' counter"
    )
    link_selector: str = Field("a[href]", description="Selector for product links")
    link_pattern: Optional[str] = Field(
        None, description="Regex a product link href must match"
    )
    max_round_retries: int = Field(2, ge=0, description="Retries for failed empty rounds")
    base_product_dedup: bool = Field(
        True, description="Collapse URLs sharing everything up to the last '/'"
    )

    model_config = PydanticConfigDict(use_enum_values=False)


class DetailConfig(BaseModel):
    """Detail-page fetch and extraction settings."""

    use_renderer: bool = Field(False, description="Fetch detail pages through the renderer")
    wait_selector: Optional[str] = Field(None, description="Renderer wait hint")
    interactions: bool = Field(False, description="Click through colour swatches")
    side_channel_markers: List[str] = Field(
        default_factory=lambda: ["COLOR_VARIATIONS"],
        description="stderr markers carrying per-variant JSON",
    )
    strategies: List[str] = Field(
        default_factory=lambda: ["next_data", "side_channel", "html"],
        description="Ordered extraction strategies",
    )
    fetch_colour_pages: bool = Field(
        False, description="Fetch each colourway's own page for imagery"
    )


class SiteProfile(BaseModel):
    """Per-site harvesting profile."""

    site_id: str = Field(..., min_length=1, description="Site identifier")
    name: str = Field(..., min_length=1, description="Display name")
    base_url: str = Field(..., description="Site origin")
    currency: str = Field("EUR", description="Listing currency")
    listing: ListingConfig = Field(default_factory=ListingConfig)
    detail: DetailConfig = Field(default_factory=DetailConfig)
    default_category: Optional[str] = Field(None, description="Catalog category name")
    max_products: Optional[int] = Field(None, ge=1, description="Limit per run")

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be absolute")
        return value.rstrip("/")


class ScrapeJob(BaseModel):
    """Job status surface consumed by the orchestrator's caller."""

    site_id: str = Field(..., description="Site identifier")
    status: JobStatus = Field(JobStatus.PENDING, description="Current job status")
    started_at: Optional[datetime] = Field(None, description="Execution start time")
    finished_at: Optional[datetime] = Field(None, description="Execution finish time")
    total_found: int = Field(0, description="Product URLs collected")
    total_created: int = Field(0, description="Products created remotely")
    total_updated: int = Field(0, description="Products updated remotely")
    total_failed: int = Field(0, description="Items that failed")
    error_message: Optional[str] = Field(None, description="Truncated failure message")
