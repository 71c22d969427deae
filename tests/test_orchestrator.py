"""
Tests for the orchestrator: the ambient timer, playing entries through the
display, immediate responses, manual interrupts and shutdown.
"""

import asyncio

import pytest

from conftest import FailingAnimator, GatedAnimator, make_orchestrator, wait_until
from narrator.content.loader import ContentLibrary
from narrator.core.event_bus import EventBus, EventType
from narrator.core.types import Emotion
from narrator.display.state_machine import DisplayState
from narrator.events.kinds import EventKind


def instant_timing(monkeypatch, orchestrator):
    """Show lines without holding or idling."""
    monkeypatch.setattr(orchestrator.selector, "display_time", lambda *args: 0.0)
    monkeypatch.setattr(orchestrator.selector, "idle_time", lambda *args: 0.0)


def multi_line_library(lines):
    return ContentLibrary.from_documents(ambient=[{
        "_context": {"when": "any"},
        "lines": [{"lines": lines}],
    }])


class TestAmbientTimer:
    """Test the single ambient timer."""

    def test_not_running_never_schedules(self, sample_library, instant_animator, clock):
        """Test that a stopped narrator keeps no timer."""
        orchestrator = make_orchestrator(sample_library, instant_animator, clock)
        assert not orchestrator.schedule_ambient(1.0, "test")
        assert orchestrator.ambient_timer is None

    @pytest.mark.asyncio
    async def test_one_timer_at_a_time(self, sample_library, instant_animator, clock):
        """Test that scheduling replaces the armed timer."""
        orchestrator = make_orchestrator(sample_library, instant_animator, clock, startup_delay=100.0)
        orchestrator.start()
        startup = orchestrator.ambient_timer

        assert orchestrator.schedule_ambient(10.0, "first")
        first = orchestrator.ambient_timer
        assert orchestrator.schedule_ambient(20.0, "second")

        assert startup.cancelled()
        assert first.cancelled()
        assert orchestrator.ambient_reason == "second"

        orchestrator.stop()
        assert orchestrator.ambient_timer is None

    @pytest.mark.asyncio
    async def test_empty_corpus_retries_later(self, instant_animator, clock):
        """Test the fixed retry when there is nothing to say."""
        orchestrator = make_orchestrator(ContentLibrary.empty(), instant_animator, clock)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "no_selection")
        remaining = orchestrator.ambient_timer.when() - asyncio.get_running_loop().time()
        assert 4.0 < remaining <= 5.0
        assert instant_animator.typed == []

        orchestrator.stop()


class TestAmbientLines:
    """Test ambient entries from selection to completion."""

    @pytest.mark.asyncio
    async def test_welcome_comes_first(self, sample_library, instant_animator, clock, monkeypatch):
        """Test the first line and the follow-up scheduling."""
        orchestrator = make_orchestrator(sample_library, instant_animator, clock)
        instant_timing(monkeypatch, orchestrator)
        orchestrator.route(EventKind.PAGE_LOADED)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == ["Hello there."]
        assert orchestrator.router.metrics.shown_ambient == 1
        assert orchestrator.text_token == 1

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_multi_line_entry_holds_the_lock(self, instant_animator, clock, monkeypatch):
        """Test that every line plays in order under one sequence lock."""
        library = ContentLibrary.from_documents(ambient=[{
            "_context": {"when": "any"},
            "lines": [{"lines": ["One.", "Two.", "Three."]}],
        }])
        bus = EventBus()
        orchestrator = make_orchestrator(library, instant_animator, clock, event_bus=bus,
                                         line_gap_min=0.0, line_gap_max=0.0)
        instant_timing(monkeypatch, orchestrator)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == ["One.", "Two.", "Three."]
        assert not orchestrator.coordinator.is_locked
        assert len(bus.get_event_history(EventType.SEQUENCE_LOCKED)) == 1
        assert len(bus.get_event_history(EventType.SEQUENCE_UNLOCKED)) == 1
        assert orchestrator.stats["lines_shown"] == 3

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_rare_single_line_is_skipped(self, instant_animator, clock, monkeypatch):
        """Test that a failed rarity roll still completes the entry."""
        library = ContentLibrary.from_documents(ambient=[{
            "_context": {"when": "any"},
            "lines": [{"lines": [{"t": "Almost never.", "rarity": 0.0}]}],
        }])
        orchestrator = make_orchestrator(library, instant_animator, clock)
        instant_timing(monkeypatch, orchestrator)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == []
        assert orchestrator.stats["lines_skipped"] == 1

        orchestrator.stop()


    @pytest.mark.asyncio
    async def test_rare_middle_line_is_skipped(self, instant_animator, clock, monkeypatch):
        """Test that a failed roll inside a sequence moves on to the next line."""
        bus = EventBus()
        orchestrator = make_orchestrator(
            multi_line_library(["One.", {"t": "Two.", "rarity": 0.0}, "Three."]),
            instant_animator, clock, event_bus=bus, line_gap_min=0.0, line_gap_max=0.0)
        instant_timing(monkeypatch, orchestrator)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == ["One.", "Three."]
        assert orchestrator.stats["lines_skipped"] == 1
        assert not orchestrator.coordinator.is_locked
        assert len(bus.get_event_history(EventType.SEQUENCE_UNLOCKED)) == 1
        assert orchestrator.ambient_timer is not None

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_rare_last_line_still_finishes(self, instant_animator, clock, monkeypatch):
        """Test that skipping the final line releases the lock and reschedules."""
        orchestrator = make_orchestrator(
            multi_line_library(["One.", "Two.", {"t": "Three.", "rarity": 0.0}]),
            instant_animator, clock, line_gap_min=0.0, line_gap_max=0.0)
        instant_timing(monkeypatch, orchestrator)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == ["One.", "Two."]
        assert not orchestrator.coordinator.is_locked
        assert orchestrator.ambient_timer is not None

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_animator_error_keeps_the_cycle_going(self, sample_library, clock):
        """Test that a broken animator neither stalls ambient lines nor blocks responses."""
        animator = FailingAnimator()
        orchestrator = make_orchestrator(sample_library, animator, clock)
        orchestrator.route(EventKind.PAGE_LOADED)
        orchestrator.start()

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert orchestrator.ambient_timer is not None
        assert orchestrator.display.can_interrupt()

        result = orchestrator.route(EventKind.BUTTON_HESITATION, {"button": "reset"})
        assert result.responded

        orchestrator.stop()


class TestImmediateResponses:
    """Test reactive events answered through the orchestrator."""

    @pytest.mark.asyncio
    async def test_response_cuts_in(self, sample_library, instant_animator, clock):
        """Test a reactive event shown immediately and reported on the bus."""
        bus = EventBus()
        orchestrator = make_orchestrator(sample_library, instant_animator, clock, event_bus=bus,
                                         startup_delay=100.0, immediate_display=0.0, immediate_idle=0.0)
        orchestrator.start()

        result = orchestrator.route(EventKind.BUTTON_HESITATION, {"button": "reset"})

        assert result.responded
        assert result.data["text"] == ["Reset reply."]
        assert orchestrator.ambient_timer is None

        assert await wait_until(lambda: orchestrator.ambient_reason == "text_complete")
        assert instant_animator.typed == ["Reset reply."]

        responses = bus.get_event_history(EventType.IMMEDIATE_RESPONSE)
        assert responses[0].data["original_event"] == "button_hesitation"
        assert responses[0].data["button"] == "reset"

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_state_refs_fill_templates(self, sample_library, instant_animator, clock):
        """Test that event values reach the rendered line."""
        orchestrator = make_orchestrator(sample_library, instant_animator, clock,
                                         startup_delay=100.0, immediate_display=0.0, immediate_idle=0.0)
        orchestrator.start()

        result = orchestrator.route(EventKind.SLIDER_EXPLORATION, {"slider": "gravity", "new_value": 2.0})
        assert result.data["text"] == ["Gravity is now 2.0."]

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_busy_display_queues_then_retries(self, sample_library, clock):
        """Test that an event denied while typing is answered once the display frees up."""
        animator = GatedAnimator()
        orchestrator = make_orchestrator(sample_library, animator, clock,
                                         startup_delay=100.0, immediate_display=10.0)
        orchestrator.start()

        assert orchestrator.route(EventKind.BUTTON_HESITATION, {"button": "reset"}).responded
        await asyncio.wait_for(animator.typing.wait(), 1.0)

        clock.advance(9)
        busy = orchestrator.route(EventKind.SLIDER_EXPLORATION, {"slider": "gravity", "new_value": 2.0})
        assert busy.reason == "fsm_busy"
        assert busy.data["queued"] is True

        animator.typing_gate.set()
        assert await wait_until(lambda: orchestrator.display.state is DisplayState.DISPLAY)

        result = orchestrator.route(EventKind.STATE_RESET)
        assert result.reason == "pending_processed_instead"
        assert result.data["pending"] == "slider_exploration"

        animator.deleting_gate.set()
        assert await wait_until(lambda: "Gravity is now 2.0." in animator.typed)
        assert orchestrator.router.metrics.shown_immediate == 2

        orchestrator.stop()


class TestManualControl:
    """Test interrupt() and stop()."""

    @pytest.mark.asyncio
    async def test_interrupt_cooldown(self, sample_library, clock):
        """Test that manual interrupts are rate limited."""
        animator = GatedAnimator()
        animator.typing_gate.set()
        orchestrator = make_orchestrator(sample_library, animator, clock,
                                         startup_delay=100.0, immediate_display=10.0)
        orchestrator.start()
        orchestrator.route(EventKind.STATE_RESET)
        assert await wait_until(lambda: orchestrator.display.state is DisplayState.DISPLAY)
        token = orchestrator.text_token

        assert orchestrator.interrupt()
        assert orchestrator.text_token == token + 1
        assert orchestrator.ambient_reason == "interrupted"

        clock.advance(5)
        assert not orchestrator.interrupt()

        clock.advance(6)
        assert orchestrator.interrupt()

        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_interrupt_refused_while_typing(self, sample_library, clock):
        """Test that a half-typed line is never cut."""
        animator = GatedAnimator()
        orchestrator = make_orchestrator(sample_library, animator, clock, startup_delay=100.0)
        orchestrator.start()
        orchestrator.route(EventKind.STATE_RESET)
        await asyncio.wait_for(animator.typing.wait(), 1.0)

        assert not orchestrator.interrupt()
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_stop_drops_everything(self, sample_library, clock):
        """Test that stop clears the timer, display and sequence lock."""
        bus = EventBus()
        animator = GatedAnimator()
        orchestrator = make_orchestrator(sample_library, animator, clock, event_bus=bus,
                                         emotion=Emotion.CURIOUS, startup_delay=100.0)
        orchestrator.start()
        orchestrator.route(EventKind.STATE_RESET)
        await asyncio.wait_for(animator.typing.wait(), 1.0)
        token = orchestrator.text_token

        orchestrator.stop()

        assert not orchestrator.running
        assert orchestrator.ambient_timer is None
        assert orchestrator.text_token == token + 1
        assert orchestrator.display.state is DisplayState.IDLE
        assert not orchestrator.coordinator.is_locked
        assert bus.get_event_history(EventType.SYSTEM_STOPPED)[0].data["running"] is False
