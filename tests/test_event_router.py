"""
Tests for event routing: dispatch, system event handling, reactive
admission outcomes and the ambient delay policy.
"""

import pytest

from conftest import make_orchestrator, wait_until
from narrator.content.loader import ContentLibrary
from narrator.core.event_bus import EventBus, EventType
from narrator.core.types import Emotion, SequenceOwner
from narrator.events.kinds import EventCategory, EventKind
from narrator.events.router import length_multiplier


@pytest.fixture
def orchestrator(sample_library, instant_animator, clock):
    return make_orchestrator(sample_library, instant_animator, clock, startup_delay=100.0)


class TestDispatch:
    """Test the routing table."""

    def test_every_kind_has_a_handler(self, orchestrator):
        """Test the exhaustive dispatch table."""
        assert set(orchestrator.router._handlers) == set(EventKind)

    def test_categories_partition_kinds(self):
        """Test that every kind belongs to exactly one category."""
        for kind in EventKind:
            assert kind.category in EventCategory
        assert EventKind.COLLISION.category is EventCategory.OBSERVED
        assert EventKind.STATE_RESET.category is EventCategory.REACTIVE
        assert EventKind.PAGE_HIDDEN.category is EventCategory.SYSTEM

    def test_unknown_event(self, orchestrator):
        """Test that unknown events are reported, not raised."""
        result = orchestrator.route("warp_drive_engaged", {})

        assert not result.handled
        assert result.reason == "unknown_event"
        assert orchestrator.router.metrics.total_events == 0

    def test_kind_names_are_normalized(self, orchestrator):
        """Test case-insensitive event names."""
        result = orchestrator.route(" PAGE_LOADED ")
        assert result.handled
        assert orchestrator.router.metrics.session_phase == "active"

    def test_observed_event_sets_render_flag(self, orchestrator):
        """Test the has_rendered session flag."""
        orchestrator.route(EventKind.RENDER_COMPLETED)
        assert orchestrator.router.flags.has_rendered


class TestSystemEvents:
    """Test scheduling-related system events."""

    def test_ambient_cycle_when_stopped(self, orchestrator):
        """Test that nothing happens before start()."""
        assert orchestrator.route(EventKind.AMBIENT_CYCLE_READY).reason == "not_running"

    def test_stale_text_complete(self, orchestrator):
        """Test that completions from superseded text are ignored."""
        result = orchestrator.route(EventKind.TEXT_COMPLETE, {"token": 5})
        assert result.reason == "stale_text_complete"
        assert orchestrator.ambient_timer is None

    @pytest.mark.asyncio
    async def test_text_complete_schedules_next_ambient(self, orchestrator):
        """Test that the current token schedules inside the delay band."""
        orchestrator.start()
        result = orchestrator.route(EventKind.TEXT_COMPLETE, {
            "token": orchestrator.text_token, "text_length": 40, "themes": [],
        })

        assert 3.0 <= result.data["delay"] <= 30.0
        assert orchestrator.ambient_reason == "text_complete"
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_page_hidden_cancels_and_blocks(self, orchestrator):
        """Test that a hidden page has no ambient timer and no ambient output."""
        orchestrator.start()
        assert orchestrator.ambient_timer is not None

        orchestrator.route(EventKind.PAGE_HIDDEN)
        assert orchestrator.ambient_timer is None
        assert not orchestrator.schedule_ambient(1.0, "test")
        assert orchestrator.route(EventKind.AMBIENT_CYCLE_READY).reason == "page_hidden"

        orchestrator.route(EventKind.PAGE_VISIBLE)
        assert orchestrator.ambient_reason == "page_visible"
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_user_idle_and_return(self, orchestrator):
        """Test the user_idle flag."""
        orchestrator.route(EventKind.USER_IDLE, {"duration": 5})
        assert orchestrator.router.flags.user_idle

        orchestrator.route(EventKind.USER_RETURNED)
        assert not orchestrator.router.flags.user_idle


class TestMindRequests:
    """Test mind_wants_to_speak handling."""

    @pytest.mark.asyncio
    async def test_speak_request_reschedules_soon(self, orchestrator):
        """Test that the mind can bring the next line forward."""
        orchestrator.start()
        result = orchestrator.route(EventKind.MIND_WANTS_TO_SPEAK, {"emotion": "excited"})

        assert result.data["delay"] == 0.5
        assert orchestrator.ambient_reason == "mind_wants_to_speak"
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_deferred_while_sequence_locked(self, orchestrator):
        """Test that a locked sequence defers the request and replays it after unlock."""
        orchestrator.start()
        orchestrator.coordinator.lock_for_sequence(3, SequenceOwner.AMBIENT)

        result = orchestrator.route(EventKind.MIND_WANTS_TO_SPEAK, {"emotion": "surprised"})
        assert result.reason == "sequence_locked"
        assert result.data["deferred"] is True
        assert orchestrator.coordinator.deferred is not None
        assert orchestrator.ambient_reason == "startup"

        orchestrator.coordinator.unlock_sequence()
        assert await wait_until(lambda: orchestrator.ambient_reason == "mind_wants_to_speak")
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_hidden_page_refuses(self, orchestrator):
        """Test that the mind does not speak to a hidden page."""
        orchestrator.start()
        orchestrator.route(EventKind.PAGE_HIDDEN)
        assert orchestrator.route(EventKind.MIND_WANTS_TO_SPEAK).reason == "page_hidden"
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_emotion_transition_asks_to_speak(self, sample_library, instant_animator, clock):
        """Test the path from an exciting event to an earlier ambient line."""
        orchestrator = make_orchestrator(sample_library, instant_animator, clock,
                                         emotion=Emotion.CURIOUS, startup_delay=100.0)
        orchestrator.start()

        result = orchestrator.route(EventKind.COLLISION)

        assert result.data["emotion"] in ("excited", "surprised")
        assert orchestrator.ambient_reason == "mind_wants_to_speak"
        orchestrator.stop()


class TestReactiveEvents:
    """Test admission outcomes of reactive events."""

    @pytest.mark.asyncio
    async def test_no_content(self, instant_animator, clock):
        """Test that an empty corpus blocks with no_content."""
        orchestrator = make_orchestrator(ContentLibrary.empty(), instant_animator, clock)
        result = orchestrator.route(EventKind.STATE_RESET)

        assert not result.responded
        assert result.reason == "no_content"
        stats = orchestrator.router.get_stats()
        assert stats["blocked_responses"] == 1
        assert stats["block_reason_counts"] == {"no_content": 1}

    @pytest.mark.asyncio
    async def test_blocked_response_is_published(self, sample_library, instant_animator, clock):
        """Test RESPONSE_BLOCKED observations."""
        bus = EventBus()
        orchestrator = make_orchestrator(sample_library, instant_animator, clock, event_bus=bus,
                                         startup_delay=100.0)
        orchestrator.start()

        assert orchestrator.route(EventKind.STATE_RESET).responded
        second = orchestrator.route(EventKind.STATE_RESET)

        assert second.reason == "event_cooldown"
        blocked = bus.get_event_history(EventType.RESPONSE_BLOCKED)
        assert blocked[-1].data == {"event": "state_reset", "reason": "event_cooldown", "button": None}
        orchestrator.stop()

    @pytest.mark.asyncio
    async def test_locked_sequence_blocks_interaction(self, orchestrator):
        """Test that an immediate response never cuts into a multi-line entry."""
        orchestrator.coordinator.lock_for_sequence(2, SequenceOwner.AMBIENT)
        result = orchestrator.route(EventKind.STATE_RESET)

        assert result.reason == "sequence_locked"
        assert orchestrator.rate_limiter.budget == 3


class TestAmbientDelay:
    """Test the next-ambient delay policy."""

    def test_length_multiplier(self):
        """Test the text length stretch."""
        assert length_multiplier(10) == 0.8
        assert length_multiplier(20) == 1.0
        assert length_multiplier(60) == 1.2
        assert length_multiplier(150) == 1.5
        assert length_multiplier(500) == 1.8

    def test_delay_always_in_band(self, sample_library, instant_animator, clock):
        """Test the [min_delay, max_delay] clamp across moods and lengths."""
        for emotion in Emotion:
            for intensity in (0.1, 0.5, 0.95):
                router = make_orchestrator(sample_library, instant_animator, clock,
                                           emotion=emotion, intensity=intensity).router
                for text_length in (5, 45, 90, 180, 400):
                    delay = router.next_ambient_delay(text_length, ["existential"])
                    assert 3.0 <= delay <= 30.0

    def test_theme_floor(self, sample_library, instant_animator, clock):
        """Test that heavy themes hold the next line back."""
        router = make_orchestrator(sample_library, instant_animator, clock,
                                   emotion=Emotion.EXCITED, intensity=0.95).router

        assert router.theme_floor(["existential", "amused"]) == 4.0
        assert router.theme_floor([]) == 3.0
        assert router.next_ambient_delay(5, ["existential"]) >= 4.0
