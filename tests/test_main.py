"""
Tests for the terminal runner.
"""

import asyncio
import random

import pytest

from narrator.core.config import NarratorConfig
from narrator.core.event_bus import EventType
from narrator.main import SIMULATED_EVENTS, TerminalNarrator, setup_logging


class TestTerminalNarrator:
    """Test the terminal session lifecycle."""

    @pytest.mark.asyncio
    async def test_run_for_duration(self, capsys):
        """Test a short timed session starts and stops cleanly."""
        narrator = TerminalNarrator(NarratorConfig(), simulate=True, seed=3)
        await narrator.run(duration=0.1)

        assert narrator.orchestrator is not None
        assert not narrator.orchestrator.running
        assert not narrator.is_running
        assert narrator.event_bus.get_event_history(EventType.SYSTEM_STARTED)

    @pytest.mark.asyncio
    async def test_request_stop(self, capsys):
        """Test that a stop request ends an open-ended session."""
        narrator = TerminalNarrator(NarratorConfig(), seed=3)
        task = asyncio.create_task(narrator.run())

        await asyncio.sleep(0.05)
        narrator.request_stop()
        await asyncio.wait_for(task, 1.0)

        assert not narrator.orchestrator.running

    def test_simulated_payloads(self):
        """Test every simulated event produces a payload."""
        rng = random.Random(0)
        for kind, weight, factory in SIMULATED_EVENTS:
            assert weight > 0
            assert isinstance(factory(rng), dict)

    def test_setup_logging_writes_log_file(self, tmp_path):
        """Test the log file handler."""
        setup_logging("INFO", tmp_path / "logs")
        assert (tmp_path / "logs").is_dir()
