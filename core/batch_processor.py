import asyncio
import gc
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from utils.logger import create_progress_bar, get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchProcessor:
    """Bounded-concurrency wave runner.

    Items are split into batches; each batch is dispatched in waves of at most
    ``concurrency`` coroutines, and a wave completes only when every coroutine
    in it has resolved.
    """

    def __init__(
        self,
        batch_size: int = 200,
        wave_sleep: float = 0.1,
        batch_sleep: float = 0.2,
        gc_every_batches: int = 5,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        show_progress: bool = True,
    ):
        self.batch_size = max(1, batch_size)
        self.wave_sleep = wave_sleep
        self.batch_sleep = batch_sleep
        self.gc_every_batches = gc_every_batches
        self.show_progress = show_progress
        self._sleep = sleep or asyncio.sleep
        self.performance_history: List[Dict[str, Any]] = []

    def split_into_batches(self, items: Sequence[T], batch_size: int) -> List[List[T]]:
        """
        Split item list into batches.
        """
        return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]

    async def run_waves(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        concurrency: int,
    ) -> List[R]:
        """Run ``worker`` over ``items`` in waves; results keep input order."""
        concurrency = max(1, concurrency)
        results: List[R] = []
        waves = self.split_into_batches(items, concurrency)
        for index, wave in enumerate(waves):
            results.extend(await asyncio.gather(*(worker(item) for item in wave)))
            if self.wave_sleep and index < len(waves) - 1:
                await self._sleep(self.wave_sleep)
        return results

    async def process(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        concurrency: int,
        on_batch: Optional[Callable[[List[R]], Awaitable[None]]] = None,
        is_success: Optional[Callable[[R], bool]] = None,
        desc: str = "Batches",
    ) -> Dict[str, int]:
        """
        Process all items batch by batch, streaming each batch's results to ``on_batch``.

        Results are not accumulated across batches; callers that need them keep
        what they want inside ``on_batch``.
        """
        batches = self.split_into_batches(items, self.batch_size)
        totals = {"processed": 0, "succeeded": 0, "failed": 0}

        pbar = create_progress_bar(
            desc=desc, unit="batch", total=len(batches), disable=not self.show_progress
        )
        try:
            for batch_num, batch in enumerate(batches, start=1):
                start_time = time.time()
                results = await self.run_waves(batch, worker, concurrency)

                successes = sum(1 for r in results if is_success(r)) if is_success else len(results)
                totals["processed"] += len(results)
                totals["succeeded"] += successes
                totals["failed"] += len(results) - successes

                performance = self.track_batch_performance(
                    batch_num, len(batch), successes, len(results) - successes, start_time
                )
                pbar.set_description(
                    f"{desc} {batch_num}/{len(batches)} | URLs/s: {performance['urls_per_sec']:.2f} | Success: {performance['success_rate']:.1%}"
                )
                pbar.update(1)

                if on_batch is not None:
                    await on_batch(results)
                del results

                if self.gc_every_batches and batch_num % self.gc_every_batches == 0:
                    gc.collect()
                if self.batch_sleep and batch_num < len(batches):
                    await self._sleep(self.batch_sleep)
        finally:
            pbar.close()

        logger.info(
            f"{desc}: processed {totals['processed']} items, "
            f"{totals['succeeded']} succeeded, {totals['failed']} failed"
        )
        return totals

    def track_batch_performance(
        self,
        batch_num: int,
        urls_count: int,
        successes: int,
        errors: int,
        start_time: float,
    ) -> Dict[str, Any]:
        """
        Track and return performance metrics for a batch.
        """
        duration = time.time() - start_time
        performance = {
            "batch_num": batch_num,
            "urls_count": urls_count,
            "successes": successes,
            "errors": errors,
            "success_rate": successes / urls_count if urls_count > 0 else 0,
            "duration": duration,
            "urls_per_sec": urls_count / duration if duration > 0 else 0,
            "timestamp": datetime.now(),
        }
        self.performance_history.append(performance)
        return performance
