"""
Concurrent HTTP fetching with httpx: bounded waves, retry with exponential backoff,
and a rotating pool of realistic browser headers.
"""

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import httpx
from fake_useragent import UserAgent

from core.batch_processor import BatchProcessor
from core.exponential_backoff import ErrorType, ExponentialBackoff, classify_status
from core.types import FetchResult, RenderRequest
from utils.error_handling import ChallengeDetectedError, RenderError
from utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.5 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
]


class HeaderPool:
    """Fixed, rotating pool of browser header sets.

    Only the User-Agent varies between entries; Accept/Accept-Language are the
    values a desktop browser sends for a document navigation.
    """

    BASE_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
        "Accept-Language": "en-GB,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }

    def __init__(self, user_agents: Optional[Iterable[str]] = None):
        agents = [ua for ua in (user_agents or DEFAULT_USER_AGENTS) if ua]
        self.user_agents: List[str] = agents or list(DEFAULT_USER_AGENTS)
        self._cycle = itertools.cycle(self.user_agents)

    @classmethod
    def from_fake_useragent(cls, size: int = 10) -> "HeaderPool":
        """Seed the pool from fake_useragent, keeping the built-in agents on failure."""
        try:
            ua = UserAgent()
            agents = list(dict.fromkeys(ua.random for _ in range(size * 3)))[:size]
        except Exception as e:
            logger.warning(f"Failed to initialize UserAgent: {e}")
            agents = []
        return cls(agents or None)

    def next_headers(self, base_url: Optional[str] = None) -> Dict[str, str]:
        headers = dict(self.BASE_HEADERS)
        headers["User-Agent"] = next(self._cycle)
        if base_url:
            headers["Referer"] = base_url.rstrip("/") + "/"
            headers["Origin"] = base_url.rstrip("/")
        return headers


@dataclass
class FetchMetrics:
    """Metrics for tracking fetch performance"""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    response_times: List[float] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def avg_response_time(self) -> float:
        if not self.response_times:
            return 0.0
        return sum(self.response_times) / len(self.response_times)


class FetchEngine:
    """
    Async HTTP fetcher built on httpx.AsyncClient.

    Use as an async context manager; the client is created on enter and closed on exit.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff: Optional[ExponentialBackoff] = None,
        header_pool: Optional[HeaderPool] = None,
        batch_processor: Optional[BatchProcessor] = None,
        renderer=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_connections: int = 50,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.backoff = backoff or ExponentialBackoff({"max_attempts": max_retries})
        self.header_pool = header_pool or HeaderPool()
        self.batch_processor = batch_processor or BatchProcessor()
        self.renderer = renderer
        self.metrics = FetchMetrics()

        self._transport = transport
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max(1, max_connections // 2),
        )
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "FetchEngine":
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(10.0, self.timeout)),
            limits=self._limits,
            follow_redirects=True,
            transport=self._transport,
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

    def _base_for(self, url: str) -> Optional[str]:
        if self.base_url:
            return self.base_url
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
        return None

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> FetchResult:
        """
        Fetch a single URL with retry logic and metrics tracking.

        Retryable failures (429/502/503/504/520-524, transport errors) are retried
        sequentially until the backoff's attempt ceiling; everything else returns
        immediately as a failed FetchResult.
        """
        client = self._require_client()
        attempt = 0
        status_code: Optional[int] = None
        body: Optional[str] = None
        final_url: Optional[str] = None
        error: Optional[str] = None

        while True:
            attempt += 1
            self.metrics.total_requests += 1
            request_headers = self.header_pool.next_headers(self._base_for(url))
            if headers:
                request_headers.update(headers)

            start_time = time.time()
            try:
                response = await client.request(
                    method, url, params=params, json=json, headers=request_headers
                )
            except httpx.TimeoutException as exc:
                error_type = ErrorType.TIMEOUT
                status_code, body = None, None
                error = f"timeout: {exc.__class__.__name__}"
            except httpx.TransportError as exc:
                error_type = ErrorType.NETWORK
                status_code, body = None, None
                error = f"transport error: {exc.__class__.__name__}: {exc}"
            except (httpx.RequestError, httpx.InvalidURL) as exc:
                error_type = ErrorType.FATAL
                status_code, body = None, None
                error = f"request error: {exc}"
            else:
                response_time = time.time() - start_time
                self.metrics.response_times.append(response_time)
                status_code = response.status_code
                final_url = str(response.url)
                body = response.text

                if 200 <= status_code < 300:
                    self.metrics.successful_requests += 1
                    self.backoff.track_success(url)
                    logger.debug(f"Successfully fetched {url} in {response_time:.2f}s")
                    return FetchResult(
                        url=url,
                        final_url=final_url,
                        status_code=status_code,
                        body=body,
                        error=None,
                        attempts=attempt,
                    )

                error_type = classify_status(status_code)
                error = f"HTTP {status_code}"

            self.metrics.failed_requests += 1
            self.backoff.track_failure(url, error_type)

            if not self.backoff.should_retry(attempt, error_type):
                break

            logger.warning(
                "%s for %s (attempt %d/%d), retrying",
                error,
                url,
                attempt,
                self.backoff.max_attempts,
            )
            await self.backoff.wait_with_backoff(url, attempt, error_type)

        logger.warning(f"Giving up on {url} after {attempt} attempt(s): {error}")
        return FetchResult(
            url=url,
            final_url=final_url,
            status_code=status_code,
            body=body,
            error=error,
            attempts=attempt,
        )

    async def fetch_batch(
        self, urls: Iterable[str], concurrency: int = 20
    ) -> Dict[str, FetchResult]:
        """Fetch every URL in waves of at most ``concurrency`` requests."""
        unique_urls = list(dict.fromkeys(urls))
        results = await self.batch_processor.run_waves(unique_urls, self.fetch, concurrency)
        return {result.url: result for result in results}

    async def fetch_in_batches(
        self,
        urls: Iterable[str],
        concurrency: int,
        on_batch: Callable[[List[FetchResult]], Awaitable[None]],
        desc: str = "Fetching",
        fetcher: Optional[Callable[[str], Awaitable[FetchResult]]] = None,
    ) -> Dict[str, int]:
        """Fetch a large URL list batch by batch, handing each batch to ``on_batch``."""
        unique_urls = list(dict.fromkeys(urls))
        return await self.batch_processor.process(
            unique_urls,
            fetcher or self.fetch,
            concurrency,
            on_batch=on_batch,
            is_success=lambda result: result.ok,
            desc=desc,
        )

    async def fetch_rendered(
        self, url: str, wait_selector: Optional[str] = None, timeout: Optional[float] = None
    ) -> FetchResult:
        """Delegate a JS-dependent page to the render bridge."""
        if self.renderer is None:
            raise RuntimeError("No renderer configured for rendered fetches")

        self.metrics.total_requests += 1
        try:
            page = await self.renderer.render(
                RenderRequest(url=url, wait_selector=wait_selector, timeout=timeout)
            )
        except (RenderError, ChallengeDetectedError) as exc:
            self.metrics.failed_requests += 1
            logger.warning(f"Render failed for {url}: {exc}")
            return FetchResult(url=url, error=str(exc), attempts=exc.context.get("attempts", 1))

        self.metrics.successful_requests += 1
        return FetchResult(
            url=url, final_url=url, status_code=200, body=page.html, attempts=page.attempts
        )
