"""
Category link collection.

Two listing shapes are supported: JSON category APIs paginated by an
anchor/offset parameter, and HTML listings rendered once with an item-count
parameter so the renderer can lazy-scroll the whole set into the DOM.
"""

from __future__ import annotations

import asyncio
import gc
import json
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from core.types import FetchResult, ListingKind, SiteProfile
from utils.error_handling import ChallengeDetectedError, RenderError
from utils.logger import get_logger

logger = get_logger(__name__)

ITEM_COUNT_PATTERN = re.compile(r"(\d+)\s+of\s+(\d+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


def dedupe_exact(urls: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(url for url in urls if url))


def base_product_key(url: str) -> str:
    """Everything up to and including the last '/' of the path."""
    path_only = url.split("?", 1)[0].split("#", 1)[0]
    cut = path_only.rfind("/")
    if cut <= path_only.find("//") + 1:
        return path_only
    return path_only[: cut + 1]


def dedupe_base_product(urls: Iterable[str]) -> List[str]:
    """Keep the first URL seen per base product; collapses per-colourway duplicates."""
    seen: Dict[str, str] = {}
    for url in urls:
        seen.setdefault(base_product_key(url), url)
    return list(seen.values())


def deduplicate(urls: Iterable[str]) -> List[str]:
    return dedupe_base_product(dedupe_exact(urls))


# ---------------------------------------------------------------------------
# Link extraction
# ---------------------------------------------------------------------------


def extract_json_links(payload: Any, base_url: str) -> List[str]:
    """Read ``productGroupings[].products[].pdpUrl`` from a category API payload."""
    if not isinstance(payload, dict):
        return []
    groupings = payload.get("productGroupings")
    if groupings is None and isinstance(payload.get("data"), dict):
        groupings = payload["data"].get("productGroupings")
    if not isinstance(groupings, list):
        return []

    links: List[str] = []
    for grouping in groupings:
        if not isinstance(grouping, dict):
            continue
        for product in grouping.get("products") or []:
            pdp = product.get("pdpUrl") if isinstance(product, dict) else None
            if not isinstance(pdp, dict):
                continue
            if pdp.get("url"):
                links.append(pdp["url"])
            elif pdp.get("path"):
                links.append(urljoin(base_url.rstrip("/") + "/", pdp["path"].lstrip("/")))
    return links


def extract_html_links(
    html: str, base_url: str, selector: str = "a[href]", pattern: Optional[str] = None
) -> List[str]:
    soup = BeautifulSoup(html, "html.parser")
    compiled = re.compile(pattern) if pattern else None
    host = urlsplit(base_url).netloc

    links: List[str] = []
    for anchor in soup.select(selector):
        href = (anchor.get("href") or "").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            continue
        absolute = urljoin(base_url.rstrip("/") + "/", href)
        if urlsplit(absolute).netloc != host:
            continue
        if compiled and not compiled.search(absolute):
            continue
        links.append(absolute)
    return links


def parse_item_count(html: str, selector: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse an 'N of M' counter; None when missing or inconsistent."""
    if not selector:
        return None
    element = BeautifulSoup(html, "html.parser").select_one(selector)
    if element is None:
        return None
    match = ITEM_COUNT_PATTERN.search(element.get_text(" ", strip=True))
    if not match:
        return None
    current, total = int(match.group(1)), int(match.group(2))
    if current <= 0 or total <= 0 or current > total:
        logger.warning(f"Invalid product count numbers: {current} of {total}")
        return None
    return current, total


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class LinkCollector:
    """Produces the deduplicated detail-page URL set for one site."""

    def __init__(
        self,
        fetch_engine,
        profile: SiteProfile,
        render_bridge=None,
        round_sleep: float = 0.5,
        release_every_rounds: int = 10,
        debug_dir: Optional[str] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.fetch_engine = fetch_engine
        self.profile = profile
        self.render_bridge = render_bridge
        self.round_sleep = round_sleep
        self.release_every_rounds = release_every_rounds
        self.debug_dir = debug_dir
        self._sleep = sleep or asyncio.sleep
        self._first_response_saved = False

    async def collect(self, seed: str, concurrency: int = 5) -> List[str]:
        """Collect deduplicated product URLs (discovery order) from one seed."""
        if self.profile.listing.kind == ListingKind.RENDERED_HTML:
            return await self.collect_rendered(seed)
        return await self.collect_json(seed, concurrency)

    def page_url(self, seed: str, page_index: int) -> str:
        listing = self.profile.listing
        offset = page_index * listing.page_size
        return str(httpx.URL(seed).copy_set_param(listing.anchor_param, str(offset)))

    async def collect_json(self, seed: str, concurrency: int = 5) -> List[str]:
        """
        Paginate an anchor-offset category API, ``concurrency`` pages per round.

        A round with zero links ends collection only if every page in it was
        fetched successfully; a round that came back empty because of failed
        fetches is retried up to ``max_round_retries`` times.
        """
        concurrency = max(1, concurrency)
        max_round_retries = self.profile.listing.max_round_retries
        collected: List[str] = []
        page_index = 0
        round_num = 0
        round_retries = 0

        while True:
            round_num += 1
            page_urls = [self.page_url(seed, page_index + i) for i in range(concurrency)]
            results = await self.fetch_engine.fetch_batch(page_urls, concurrency)

            round_links: List[str] = []
            failures = 0
            for url in page_urls:
                links = self._links_from_result(results.get(url))
                if links is None:
                    failures += 1
                    continue
                round_links.extend(links)
            del results

            logger.info(
                f"Listing round {round_num} for {seed}: {len(round_links)} links, {failures} failed page(s)"
            )

            if not round_links:
                if failures and round_retries < max_round_retries:
                    round_retries += 1
                    logger.warning(
                        f"Round {round_num} returned no links with {failures} failed page(s); "
                        f"retrying ({round_retries}/{max_round_retries})"
                    )
                    await self._sleep(self.round_sleep)
                    continue
                if failures:
                    logger.warning(
                        f"Stopping pagination for {seed}: round still failing after {max_round_retries} retries"
                    )
                break

            round_retries = 0
            collected.extend(round_links)
            page_index += concurrency

            if self.release_every_rounds and round_num % self.release_every_rounds == 0:
                gc.collect()
            await self._sleep(self.round_sleep)

        unique = self.dedupe(collected)
        logger.info(
            f"Category link collection completed for {seed}: {len(collected)} raw, {len(unique)} unique"
        )
        return unique

    def dedupe(self, urls: Iterable[str]) -> List[str]:
        if self.profile.listing.base_product_dedup:
            return deduplicate(urls)
        return dedupe_exact(urls)

    def _links_from_result(self, result: Optional[FetchResult]) -> Optional[List[str]]:
        """Links from one listing page, or None when the page failed."""
        if result is None or not result.ok:
            error = result.error if result is not None else "missing result"
            logger.warning(f"Listing page failed, skipping: {error}")
            return None
        try:
            payload = result.json()
        except ValueError as exc:
            logger.warning(f"Listing page {result.url} is not JSON: {exc}")
            return None

        self._dump_first_response(result.url, payload)
        return extract_json_links(payload, self.profile.base_url)

    async def collect_rendered(self, seed: str) -> List[str]:
        """Render the listing once, then re-render with the full item count."""
        if self.render_bridge is None:
            raise RuntimeError("Rendered listings need a render bridge")

        listing = self.profile.listing
        try:
            first_html = await self.render_bridge.render(seed, wait_hint=listing.count_selector)
        except (RenderError, ChallengeDetectedError) as exc:
            logger.error(f"Failed to fetch first listing page {seed}: {exc}")
            return []

        self._dump_first_response(seed, first_html)
        first_links = extract_html_links(
            first_html, self.profile.base_url, listing.link_selector, listing.link_pattern
        )

        counts = parse_item_count(first_html, listing.count_selector)
        if counts is None:
            logger.warning(
                f"Could not parse product count for {seed}, using first page links only"
            )
            return self.dedupe(first_links)

        current, total = counts
        full_url = str(httpx.URL(seed).copy_set_param(listing.count_param, str(total)))
        logger.info(f"Product count {current} of {total}; rendering {full_url}")

        try:
            full_html = await self.render_bridge.render(full_url, wait_hint=listing.count_selector)
        except (RenderError, ChallengeDetectedError) as exc:
            logger.error(f"Failed to fetch full listing {full_url}: {exc}")
            return self.dedupe(first_links)

        links = self.dedupe(
            extract_html_links(
                full_html, self.profile.base_url, listing.link_selector, listing.link_pattern
            )
        )
        logger.info(
            f"Extracted {len(links)} unique links from {full_url} (expected {total})"
        )
        return links

    def _dump_first_response(self, url: str, payload: Any) -> None:
        if self._first_response_saved or not self.debug_dir:
            return
        self._first_response_saved = True
        target = Path(self.debug_dir) / f"listing_{self.profile.site_id}_first.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(
                json.dumps({"url": url, "payload": payload}, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            logger.debug(f"Saved first listing response to {target}")
        except OSError as exc:
            logger.warning(f"Could not save first listing response: {exc}")
