"""
Narrator - Main Entry Point

Runs the narrator in a terminal: lines are typed and deleted in place,
and an optional simulator feeds it application events.

Usage:
    narrator                                # Run until Ctrl+C
    narrator --simulate --duration 120      # Random events for two minutes
    narrator --content-dir ./content        # Use another content corpus
"""

import argparse
import asyncio
import logging
import random
import signal
import sys
from pathlib import Path
from typing import Optional

from .content.loader import ContentLibrary
from .core.config import LOG_LEVELS, ConfigManager, NarratorConfig
from .core.event_bus import EventBus, EventType
from .display.animation import PacedTextAnimator
from .events.kinds import EventKind
from .orchestrator.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

SIMULATED_MODES = ("collision", "ejection", "stable", "zoom", "drag", "render", "idle")

# (event, relative frequency, payload factory)
SIMULATED_EVENTS = (
    (EventKind.COLLISION, 5, lambda rng: {"bodies": rng.randint(2, 4)}),
    (EventKind.EJECTION, 2, lambda rng: {"speed": round(rng.uniform(1.0, 9.0), 2)}),
    (EventKind.STABLE, 2, lambda rng: {}),
    (EventKind.ZOOM, 3, lambda rng: {"level": round(rng.uniform(0.5, 4.0), 2)}),
    (EventKind.DRAG, 3, lambda rng: {}),
    (EventKind.BUTTON_HESITATION, 2, lambda rng: {"button": rng.choice(["reset", "pause", "random"])}),
    (EventKind.SLIDER_EXPLORATION, 2, lambda rng: {
        "slider": "gravity", "new_value": round(rng.uniform(0.1, 5.0), 3), "old_value": 1.0,
    }),
    (EventKind.PRESET_BROWSING, 1, lambda rng: {"select": "preset"}),
    (EventKind.STATE_RESET, 1, lambda rng: {}),
    (EventKind.SIM_IDLE, 1, lambda rng: {"duration": rng.uniform(20.0, 60.0)}),
)


def setup_logging(level: str, logs_dir: Optional[Path] = None) -> None:
    """Configure logging. Console output goes to stderr; stdout carries the text."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(logs_dir / 'narrator.log'))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


class TerminalNarrator:
    """Runs an orchestrator against the terminal."""

    def __init__(self, config: NarratorConfig, simulate: bool = False, seed: Optional[int] = None):
        self.config = config
        self.simulate = simulate
        self.rng = random.Random(seed)
        self.event_bus = EventBus()
        self.orchestrator: Optional[Orchestrator] = None
        self.is_running = False
        self._stopped = asyncio.Event()
        self._mode = self.rng.choice(SIMULATED_MODES)
        self._state = {"gravity": 1.0, "bodies": 3, "mode": self._mode}

    def _render(self, visible: str) -> None:
        sys.stdout.write("\r\033[K" + visible)
        sys.stdout.flush()

    async def initialize(self) -> None:
        logger.info("Initializing narrator...")
        await self.event_bus.start()
        self.event_bus.subscribe(EventType.EMOTION_CHANGED, self._on_emotion_changed)
        self.event_bus.subscribe(EventType.ERROR_OCCURRED, self._on_error)

        library = ContentLibrary.load(self.config.content_dir)
        stats = library.get_stats()
        logger.info(f"Loaded content: {stats}")

        self.orchestrator = Orchestrator(
            library,
            PacedTextAnimator(on_render=self._render, rng=self.rng),
            self.config,
            mode_provider=lambda: self._mode,
            state_provider=lambda: self._state,
            event_bus=self.event_bus,
            rng=self.rng,
        )

    async def _on_emotion_changed(self, event) -> None:
        logger.debug(f"Mood: {event.data.get('previous')} -> {event.data.get('emotion')} ({event.data.get('reason')})")

    async def _on_error(self, event) -> None:
        logger.warning(f"Bus handler error: {event.data}")

    async def _simulate_events(self) -> None:
        """Throw random application events at the narrator."""
        kinds = [(kind, weight) for kind, weight, _ in SIMULATED_EVENTS]
        payloads = {kind: factory for kind, _, factory in SIMULATED_EVENTS}
        while self.is_running:
            await asyncio.sleep(self.rng.uniform(2.0, 8.0))
            if not self.is_running:
                break

            if self.rng.random() < 0.15:
                self._mode = self.rng.choice(SIMULATED_MODES)
                self._state["mode"] = self._mode
                self.orchestrator.route(EventKind.MODE_CHANGED, {"mode": self._mode})
                continue

            kind = self.rng.choices([k for k, _ in kinds], weights=[w for _, w in kinds])[0]
            data = payloads[kind](self.rng)
            if "new_value" in data:
                self._state["gravity"] = data["new_value"]
            result = self.orchestrator.route(kind, data)
            logger.debug(f"Simulated {kind.value}: {result.to_dict()}")

    async def run(self, duration: Optional[float] = None) -> None:
        await self.initialize()

        self.is_running = True
        self.orchestrator.route(EventKind.PAGE_LOADED)
        self.orchestrator.start()

        tasks = []
        if self.simulate:
            tasks.append(asyncio.create_task(self._simulate_events()))

        try:
            if duration is not None:
                await asyncio.wait_for(self._stopped.wait(), timeout=duration)
            else:
                await self._stopped.wait()
        except asyncio.TimeoutError:
            logger.info(f"Ran for {duration:.0f}s")
        finally:
            self.is_running = False
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.shutdown()

    def request_stop(self) -> None:
        self._stopped.set()

    async def shutdown(self) -> None:
        if self.orchestrator is not None:
            stats = self.orchestrator.router.get_stats()
            self.orchestrator.stop()
            sys.stdout.write("\n")
            logger.info(f"Session: {stats['shown_ambient']} ambient, {stats['shown_immediate']} immediate, "
                        f"{stats['blocked_responses']} blocked, {stats['missed_responses']} missed")
        await self.event_bus.stop()


async def async_main(config: NarratorConfig, simulate: bool, seed: Optional[int],
                     duration: Optional[float]) -> None:
    narrator = TerminalNarrator(config, simulate=simulate, seed=seed)

    loop = asyncio.get_running_loop()
    if sys.platform != 'win32':
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, narrator.request_stop)

    await narrator.run(duration)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Narrator: an emotional companion that comments on what you do',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  narrator                              # Ambient lines only
  narrator --simulate                   # Feed random application events
  narrator --simulate --seed 7 --duration 60
"""
    )
    parser.add_argument('--content-dir', type=Path, help='Content corpus directory')
    parser.add_argument('--duration', type=float, help='Stop after this many seconds')
    parser.add_argument('--simulate', action='store_true', help='Generate random application events')
    parser.add_argument('--seed', type=int, help='Random seed for reproducible sessions')
    parser.add_argument('--env-file', type=Path, help='Environment file to load')
    parser.add_argument(
        '--log-level',
        choices=[level.upper() for level in LOG_LEVELS],
        help='Logging level (default: from configuration)'
    )

    args = parser.parse_args()

    try:
        config = ConfigManager(args.env_file).load_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.content_dir is not None:
        config.content_dir = args.content_dir
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_level, config.logs_dir)

    logger.info("=" * 60)
    logger.info(f"{config.name.upper()} v{config.version}")
    logger.info("=" * 60)

    try:
        asyncio.run(async_main(config, args.simulate, args.seed, args.duration))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
