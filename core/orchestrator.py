"""
Per-site harvest run: collect, fetch, extract, enrich, sync.

Item-level failures become counters and log lines; configuration errors
abort the run.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from core.types import (
    ExtractionContext,
    FetchResult,
    JobStatus,
    ScrapeJob,
    SiteProfile,
    SyncStatus,
)
from network.link_collector import LinkCollector
from utils.error_handling import (
    ITEM_LEVEL_ERRORS,
    ConfigurationError,
    ErrorContext,
    HarvestError,
    TransientNetworkError,
    TranslationError,
    log_item_error,
    truncate_error_message,
)
from utils.logger import get_logger, log_pipeline_event

logger = get_logger(__name__)


class HarvestOrchestrator:
    """Sequences the pipeline for one site profile at a time."""

    def __init__(
        self,
        fetch_engine,
        extractor,
        sync_engine,
        render_bridge=None,
        media_downloader=None,
        translator=None,
        listing_concurrency: int = 5,
        detail_concurrency: int = 20,
        colour_concurrency: int = 8,
        round_sleep: float = 0.5,
        debug_dir: Optional[str] = None,
    ):
        self.fetch_engine = fetch_engine
        self.extractor = extractor
        self.sync_engine = sync_engine
        self.render_bridge = render_bridge
        self.media_downloader = media_downloader
        self.translator = translator
        self.listing_concurrency = listing_concurrency
        self.detail_concurrency = detail_concurrency
        self.colour_concurrency = colour_concurrency
        self.round_sleep = round_sleep
        self.debug_dir = debug_dir
        self.job: Optional[ScrapeJob] = None
        self._first_response_saved = False
        self._side_channels: Dict[str, Dict[str, Any]] = {}

    def make_collector(self, profile: SiteProfile) -> LinkCollector:
        return LinkCollector(
            self.fetch_engine,
            profile,
            render_bridge=self.render_bridge,
            round_sleep=self.round_sleep,
            debug_dir=self.debug_dir,
        )

    async def run(self, profile: SiteProfile) -> ScrapeJob:
        """Harvest one site; returns the finished job record."""
        job = ScrapeJob(site_id=profile.site_id)
        self.job = job
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now(timezone.utc)
        log_pipeline_event("job_started", {"site_id": profile.site_id})

        try:
            urls = await self.collect_links(profile)
            if profile.max_products:
                urls = urls[: profile.max_products]
            job.total_found = len(urls)
            if not urls:
                return self._finish(job, JobStatus.FAILED, "No product URLs found")

            logger.info(f"Harvesting {len(urls)} product(s) for {profile.site_id}")
            await self.fetch_engine.fetch_in_batches(
                urls,
                self.detail_concurrency,
                on_batch=lambda results: self.process_batch(profile, results),
                desc=f"{profile.site_id} details",
                fetcher=lambda url: self.fetch_detail(profile, url),
            )
        except ConfigurationError as exc:
            self._finish(job, JobStatus.FAILED, str(exc))
            raise
        except HarvestError as exc:
            logger.error(f"Harvest for {profile.site_id} aborted: {exc}")
            return self._finish(job, JobStatus.FAILED, str(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error while harvesting {profile.site_id}")
            self._finish(job, JobStatus.FAILED, f"{type(exc).__name__}: {exc}")
            raise

        return self._finish(job, JobStatus.SUCCESS)

    def _finish(self, job: ScrapeJob, status: JobStatus, error: Optional[str] = None) -> ScrapeJob:
        job.status = status
        job.finished_at = datetime.now(timezone.utc)
        if error:
            job.error_message = truncate_error_message(error)
        log_pipeline_event(
            "job_finished",
            {
                "site_id": job.site_id,
                "status": job.status.value,
                "found": job.total_found,
                "created": job.total_created,
                "updated": job.total_updated,
                "failed": job.total_failed,
                "error": job.error_message,
            },
            level="ERROR" if status == JobStatus.FAILED else "INFO",
        )
        return job

    async def collect_links(self, profile: SiteProfile) -> List[str]:
        collector = self.make_collector(profile)
        urls: List[str] = []
        for seed in profile.listing.seeds:
            urls.extend(await collector.collect(seed, self.listing_concurrency))
        return collector.dedupe(urls)

    # ------------------------------------------------------------------
    # Detail stage
    # ------------------------------------------------------------------

    async def fetch_detail(self, profile: SiteProfile, url: str) -> FetchResult:
        detail = profile.detail
        if not detail.use_renderer:
            return await self.fetch_engine.fetch(url)
        if detail.interactions and self.render_bridge is not None:
            try:
                html, side_channel = await self.render_bridge.render_with_interactions(
                    url, wait_hint=detail.wait_selector
                )
            except ITEM_LEVEL_ERRORS as exc:
                return FetchResult(url=url, error=str(exc), attempts=exc.context.get("attempts", 1))
            self._side_channels[url] = side_channel
            return FetchResult(url=url, final_url=url, status_code=200, body=html, attempts=1)
        return await self.fetch_engine.fetch_rendered(url, wait_selector=detail.wait_selector)

    async def process_batch(self, profile: SiteProfile, results: List[FetchResult]) -> None:
        for result in results:
            if not result.ok:
                self.job.total_failed += 1
                log_item_error(
                    TransientNetworkError(
                        result.error or f"HTTP {result.status_code}", status_code=result.status_code
                    ),
                    ErrorContext(url=result.url, stage="fetch"),
                )
                self._side_channels.pop(result.url, None)
                continue
            await self.process_item(profile, result)

    @staticmethod
    def _source_of(result: FetchResult) -> Union[str, Dict[str, Any]]:
        body = (result.body or "").lstrip()
        if body.startswith("{"):
            try:
                data = result.json()
            except ValueError:
                return result.body or ""
            if isinstance(data, dict):
                return data
        return result.body or ""

    async def process_item(self, profile: SiteProfile, result: FetchResult) -> None:
        stage = "extract"
        try:
            self._dump_first_response(profile, result)
            context = ExtractionContext(
                url=result.url,
                site_id=profile.site_id,
                base_url=profile.base_url,
                currency=profile.currency,
                side_channel=self._side_channels.pop(result.url, {}),
                strategies=list(profile.detail.strategies),
            )
            product = self.extractor.extract(self._source_of(result), context)

            if profile.detail.fetch_colour_pages:
                stage = "colour_pages"
                await self.fetch_colour_pages(profile, product)

            if self.media_downloader is not None:
                stage = "media"
                await self.media_downloader.download_product_images(product)

            if self.translator is not None and product.description:
                stage = "translate"
                try:
                    product.meta["description_translated"] = await self.translator.translate(
                        product.description
                    )
                except TranslationError as exc:
                    logger.warning(f"Translation failed for {product.external_id}: {exc}")

            stage = "sync"
            mapping = await self.sync_engine.sync(product, site_name=profile.name)
        except ITEM_LEVEL_ERRORS as exc:
            self.job.total_failed += 1
            log_item_error(exc, ErrorContext(url=result.url, stage=stage))
            return
        except ConfigurationError:
            raise
        except Exception as exc:
            self.job.total_failed += 1
            log_item_error(exc, ErrorContext(url=result.url, stage=stage), level="ERROR")
            return

        if mapping.last_sync_status == SyncStatus.FAILED:
            self.job.total_failed += 1
        elif mapping.last_payload_snapshot.get("operation") == "create":
            self.job.total_created += 1
        else:
            self.job.total_updated += 1

    async def fetch_colour_pages(self, profile: SiteProfile, product) -> None:
        """Pull each colourway's own page for its gallery."""
        pages = self.extractor.colour_page_urls(product)
        if not pages:
            return
        results = await self.fetch_engine.fetch_batch(list(pages.values()), self.colour_concurrency)
        for colour_label, url in pages.items():
            page = results.get(url)
            if page is None or not page.ok:
                logger.warning(f"Colour page failed for {product.external_id}/{colour_label}: {url}")
                continue
            added = self.extractor.apply_colour_page(product, colour_label, page.body, profile.base_url)
            logger.debug(f"{added} image(s) added for {product.external_id}/{colour_label}")
        del results

    def _dump_first_response(self, profile: SiteProfile, result: FetchResult) -> None:
        if self._first_response_saved or not self.debug_dir:
            return
        self._first_response_saved = True
        target = Path(self.debug_dir) / f"detail_{profile.site_id}_first.html"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(result.body or "", encoding="utf-8")
            side_channel = self._side_channels.get(result.url)
            if side_channel:
                target.with_suffix(".side_channel.json").write_text(
                    json.dumps(side_channel, ensure_ascii=False, indent=2), encoding="utf-8"
                )
        except OSError as exc:
            logger.warning(f"Could not save first detail response: {exc}")
