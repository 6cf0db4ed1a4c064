"""Unit tests for process memory sampling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import psutil
import pytest

from seocrawl.infrastructure.memory import MemoryMonitor, process_tree_rss_mb

pytest_plugins = ('pytest_asyncio',)


class TestProcessTreeRss:
    """Tests for process_tree_rss_mb."""

    def test_current_process(self):
        assert process_tree_rss_mb() > 0

    def test_includes_children(self):
        """Test that child process memory is summed."""
        child = MagicMock()
        child.memory_info.return_value.rss = 100 * 1024 * 1024
        gone = MagicMock()
        gone.memory_info.side_effect = psutil.NoSuchProcess(pid=1234)
        parent = MagicMock()
        parent.memory_info.return_value.rss = 50 * 1024 * 1024
        parent.children.return_value = [child, gone]

        with patch("seocrawl.infrastructure.memory.psutil.Process", return_value=parent):
            assert process_tree_rss_mb(42) == 150.0

        parent.children.assert_called_once_with(recursive=True)


class TestMemoryMonitor:
    """Tests for MemoryMonitor."""

    @pytest.mark.asyncio
    async def test_samples_periodically(self):
        on_sample = AsyncMock()
        monitor = MemoryMonitor(0.01, on_sample, sampler=lambda: 123.0)

        monitor.start()
        assert monitor.is_running
        for _ in range(100):
            if on_sample.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert not monitor.is_running
        on_sample.assert_awaited_with(123.0)

    @pytest.mark.asyncio
    async def test_sampler_failure_is_skipped(self):
        on_sample = AsyncMock()

        def sampler():
            raise psutil.AccessDenied()

        monitor = MemoryMonitor(0.01, on_sample, sampler=sampler)
        monitor.start()
        await asyncio.sleep(0.05)

        assert monitor.is_running
        await monitor.stop()
        on_sample.assert_not_awaited()
