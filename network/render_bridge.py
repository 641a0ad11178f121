"""
Bridge to the out-of-process headless-browser renderer.

The renderer is a node script invoked as ``node <script> <url> [wait_selector] <timeout_ms>``.
It prints the final HTML on stdout and may emit delimited JSON blocks on stderr::

    COLOR_VARIATIONS_START
    {"Black": {...}}
    COLOR_VARIATIONS_END

The rest of the pipeline depends only on the ``Renderer`` protocol, so tests can
swap in a fake without spawning browser processes.
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from core.exponential_backoff import ErrorType, ExponentialBackoff
from core.types import RenderedPage, RenderRequest
from utils.error_handling import ChallengeDetectedError, ConfigurationError, RenderError
from utils.logger import get_logger

logger = get_logger(__name__)


CHALLENGE_MARKERS = (
    "cf-browser-verification",
    "challenge-platform",
    "cf-error-details",
    "Checking your browser before accessing",
    "Just a moment",
)

RETRYABLE_FAILURE_PATTERNS = (
    "timeout",
    "net::ERR",
    "ERR_NAME_NOT_RESOLVED",
    "ERR_INTERNET_DISCONNECTED",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
)


def detect_challenge(html: str) -> Optional[str]:
    """Return the first challenge marker found in ``html``."""
    for marker in CHALLENGE_MARKERS:
        if marker in html:
            return marker
    return None


def is_retryable_failure(message: str) -> bool:
    lowered = message.lower()
    return any(pattern.lower() in lowered for pattern in RETRYABLE_FAILURE_PATTERNS)


def extract_side_channel(stderr: str, markers: Iterable[str]) -> Dict[str, Any]:
    """Pull ``<MARKER>_START ... <MARKER>_END`` JSON blocks out of the renderer's stderr."""
    side_channel: Dict[str, Any] = {}
    for marker in markers:
        pattern = re.compile(
            rf"{re.escape(marker)}_START\s*\n(.*?)\n{re.escape(marker)}_END", re.DOTALL
        )
        match = pattern.search(stderr or "")
        if not match:
            continue
        try:
            side_channel[marker] = json.loads(match.group(1).strip())
        except json.JSONDecodeError as exc:
            logger.warning(f"Undecodable {marker} block from renderer: {exc}")
    return side_channel


@dataclass
class ProcessOutput:
    returncode: int
    stdout: str
    stderr: str


ProcessRunner = Callable[[Sequence[str], float], Awaitable[ProcessOutput]]


class Renderer(Protocol):
    async def render(self, request: RenderRequest) -> RenderedPage:
        ...


class SubprocessRenderer:
    """Runs the node render script per URL with challenge detection and retry."""

    def __init__(
        self,
        script_path: str,
        node_executable: str = "node",
        default_timeout: float = 300.0,
        grace: float = 10.0,
        backoff: Optional[ExponentialBackoff] = None,
        side_channel_markers: Sequence[str] = ("COLOR_VARIATIONS",),
        interaction_script_path: Optional[str] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.script_path = script_path
        self.interaction_script_path = interaction_script_path
        self.node_executable = node_executable
        self.default_timeout = default_timeout
        self.grace = grace
        self.side_channel_markers: List[str] = list(side_channel_markers)
        self.backoff = backoff or ExponentialBackoff(
            {"max_attempts": 5, "network_min_delay_seconds": 10.0}
        )
        self._runner: ProcessRunner = runner or self._run_process

    def ensure_available(self) -> None:
        """Raise ConfigurationError when node or the render script is missing."""
        if shutil.which(self.node_executable) is None:
            raise ConfigurationError(
                f"Render executable not found: {self.node_executable}",
                {"node_executable": self.node_executable},
            )
        for script in filter(None, (self.script_path, self.interaction_script_path)):
            if not Path(script).is_file():
                raise ConfigurationError(
                    f"Render script not found: {script}", {"script": script}
                )

    def build_command(self, request: RenderRequest) -> List[str]:
        script = self.script_path
        if request.interactions and self.interaction_script_path:
            script = self.interaction_script_path
        timeout = request.timeout or self.default_timeout
        args = [self.node_executable, script, request.url]
        if request.wait_selector:
            args.append(request.wait_selector)
        args.append(str(int(timeout * 1000)))
        return args

    async def _run_process(self, args: Sequence[str], timeout: float) -> ProcessOutput:
        self.ensure_available()
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return ProcessOutput(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def render(self, request: RenderRequest) -> RenderedPage:
        """
        Render one URL, retrying transient failures and challenge pages.

        Raises:
            RenderError: empty HTML, non-retryable exit, or retries exhausted
            ChallengeDetectedError: challenge page still served after retries
            ConfigurationError: render executable or script missing
        """
        timeout = request.timeout or self.default_timeout
        args = self.build_command(request)
        attempt = 0

        while True:
            attempt += 1
            challenge_marker: Optional[str] = None
            try:
                output = await self._runner(args, timeout + self.grace)
            except asyncio.TimeoutError:
                error_type = ErrorType.TIMEOUT
                message = f"Render process timeout after {timeout + self.grace:.0f}s"
            except FileNotFoundError as exc:
                raise ConfigurationError(
                    f"Render executable not found: {exc}", {"args": list(args)}
                ) from exc
            else:
                if output.returncode != 0:
                    message = (output.stderr or "").strip()[-500:] or f"exit code {output.returncode}"
                    error_type = ErrorType.NETWORK if is_retryable_failure(message) else ErrorType.FATAL
                elif not output.stdout.strip():
                    raise RenderError(
                        f"Renderer returned empty HTML for {request.url}",
                        {"url": request.url, "attempts": attempt},
                    )
                else:
                    challenge_marker = detect_challenge(output.stdout)
                    if challenge_marker is None:
                        self.backoff.track_success(request.url)
                        return RenderedPage(
                            url=request.url,
                            html=output.stdout,
                            side_channel=extract_side_channel(
                                output.stderr, self.side_channel_markers
                            ),
                            attempts=attempt,
                        )
                    error_type = ErrorType.CHALLENGE
                    message = f"Challenge page detected ({challenge_marker})"

            self.backoff.track_failure(request.url, error_type)
            if not self.backoff.should_retry(attempt, error_type):
                context = {"url": request.url, "attempts": attempt}
                if error_type == ErrorType.CHALLENGE:
                    raise ChallengeDetectedError(
                        f"{message} for {request.url} after {attempt} attempt(s)", context
                    )
                raise RenderError(
                    f"Render failed for {request.url} after {attempt} attempt(s): {message}",
                    context,
                )

            logger.warning(
                f"Render attempt {attempt} for {request.url} failed: {message}; retrying"
            )
            await self.backoff.wait_with_backoff(request.url, attempt, error_type)


class RenderBridge:
    """Caller-facing render operations over any ``Renderer``."""

    def __init__(self, renderer: Renderer, default_timeout: Optional[float] = None):
        self.renderer = renderer
        self.default_timeout = default_timeout

    async def render(
        self, url: str, wait_hint: Optional[str] = None, timeout: Optional[float] = None
    ) -> str:
        page = await self.renderer.render(
            RenderRequest(url=url, wait_selector=wait_hint, timeout=timeout or self.default_timeout)
        )
        return page.html

    async def render_with_interactions(
        self, url: str, timeout: Optional[float] = None, wait_hint: Optional[str] = None
    ) -> Tuple[str, Dict[str, Any]]:
        """Render with swatch click-through; side-channel data is authoritative per variant."""
        page = await self.renderer.render(
            RenderRequest(
                url=url,
                wait_selector=wait_hint,
                timeout=timeout or self.default_timeout,
                interactions=True,
            )
        )
        return page.html, page.side_channel
