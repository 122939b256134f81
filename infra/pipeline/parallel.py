#!/usr/bin/env python3
"""
Bounded worker pool for per-page stage work.

Items run on a ThreadPoolExecutor in no particular order. The first
failure cancels the pool: items that have not started are skipped,
running ones see the cancelled token, and the error is re-raised to the
caller once every started item has returned.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional

from infra.external_tool import CancelToken
from infra.pipeline.logger import PipelineLogger
from pipeline.publish.errors import Cancelled


class ParallelProcessor:
    """
    Usage:
        processor = ParallelProcessor(
            max_workers=4,
            logger=logger,
            description="Assembling pages",
            cancel_token=token,
        )

        results = processor.process(items=pages, worker_func=assemble_page)
    """

    def __init__(
        self,
        max_workers: int = 4,
        logger: Optional[PipelineLogger] = None,
        description: str = "Processing",
        progress_callback: Optional[Callable[[int, int], None]] = None,
        cancel_token: Optional[CancelToken] = None
    ):
        """
        Args:
            max_workers: Maximum number of concurrent workers
            logger: Optional logger instance for progress tracking
            description: Human-readable description for logging
            progress_callback: Optional callback(completed, total) called after each item
            cancel_token: Token checked before each item starts
        """
        self.max_workers = max(1, max_workers)
        self.logger = logger
        self.description = description
        self.progress_callback = progress_callback
        self.cancel_token = cancel_token or CancelToken()

        self.stats_lock = threading.Lock()
        self.stats = {
            "processed": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
        }

    def process(self, items: List[Any], worker_func: Callable[[Any, CancelToken], Any]) -> List[Any]:
        """Run worker_func(item, token) on every item; results come back in completion order."""
        total = len(items)

        if total == 0:
            if self.logger:
                self.logger.debug(f"{self.description}: No items to process")
            return []

        if self.logger:
            self.logger.info(f"{self.description}: {total} items, {self.max_workers} workers")

        # siblings of a failed item see this token, the caller's token stays untouched
        pool_token = self.cancel_token.child()
        results = []
        first_error: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._wrapped_worker, worker_func, item, pool_token): item
                for item in items
            }

            for future in as_completed(futures):
                try:
                    result = future.result()
                except _Skipped:
                    with self.stats_lock:
                        self.stats["skipped"] += 1
                    continue
                except Exception as e:
                    with self.stats_lock:
                        self.stats["processed"] += 1
                        self.stats["failed"] += 1
                    # a sibling's Cancelled must not hide the failure that caused it
                    if first_error is None or (isinstance(first_error, Cancelled)
                                               and not isinstance(e, Cancelled)):
                        first_error = e
                        pool_token.cancel()
                        if self.logger and not isinstance(e, Cancelled):
                            self.logger.error(f"{self.description} failed: {e}", error=str(e))
                    continue

                results.append(result)
                with self.stats_lock:
                    self.stats["processed"] += 1
                    self.stats["succeeded"] += 1
                    processed = self.stats["processed"]

                if self.progress_callback:
                    self.progress_callback(processed, total)

        if first_error is not None:
            raise first_error
        if self.stats["skipped"]:
            raise Cancelled(f"{self.description} was cancelled")

        if self.logger:
            self.logger.debug(
                f"{self.description} complete: {self.stats['succeeded']} succeeded"
            )

        return results

    def _wrapped_worker(self, worker_func: Callable, item: Any, token: CancelToken) -> Any:
        if token.is_cancelled():
            raise _Skipped()
        try:
            return worker_func(item, token)
        except Exception:
            # stop queued items before the main thread gets to see the error
            token.cancel()
            raise


class _Skipped(Exception):
    """Item was never started because the pool was cancelled."""
