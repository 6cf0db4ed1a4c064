"""
Process memory sampling.

The browser runs in child processes, so samples cover the whole process
tree rather than just the Python interpreter.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

import psutil

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


def process_tree_rss_mb(pid: Optional[int] = None) -> float:
    """
    Resident memory of a process and all of its descendants.

    Args:
        pid: Root process id (default: current process)

    Returns:
        Total RSS in megabytes
    """
    process = psutil.Process(pid or os.getpid())
    total = process.memory_info().rss

    for child in process.children(recursive=True):
        try:
            total += child.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue  # Child exited or is not ours to inspect

    return total / BYTES_PER_MB


class MemoryMonitor:
    """
    Background task that samples memory on a fixed interval.

    The sample is a point-in-time reading, not a watchdog: nothing is
    enforced between samples.
    """

    def __init__(
        self,
        interval: float,
        on_sample: Callable[[float], Awaitable[None]],
        sampler: Callable[[], float] = process_tree_rss_mb,
    ):
        """
        Args:
            interval: Seconds between samples
            on_sample: Coroutine called with each sample (MB)
            sampler: Function returning current usage in MB
        """
        self.interval = interval
        self._on_sample = on_sample
        self._sampler = sampler
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start sampling (no-op if already running)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop sampling and wait for the task to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                usage = self._sampler()
            except psutil.Error as e:
                logger.warning(f"Memory sample failed: {e}")
                continue
            logger.debug(f"Memory usage: {usage:.0f}MB")
            await self._on_sample(usage)
