"""
Keeper Loop: host-side scheduler for the evaluation trigger.

Runs continuously:
1. Poll EvaluationTrigger.check_upkeep every POLL_INTERVAL seconds
2. If due, call perform_upkeep (price read + analysis) in a worker thread
3. Keep cycle statistics for the status endpoint

The sentinel core never schedules itself; this loop is the only place that
sleeps.
"""

import asyncio
import logging
import time
from typing import Any

from .errors import PriceUnavailable
from .evaluation_trigger import EvaluationTrigger

logger = logging.getLogger(__name__)


class KeeperLoop:
    """Polls the evaluation trigger on a fixed cadence."""

    def __init__(self, trigger: EvaluationTrigger, poll_interval_seconds: float = 15) -> None:
        self.trigger = trigger
        self.poll_interval_seconds = poll_interval_seconds

        self._running = False
        self._last_upkeep = 0.0
        self._stats: dict[str, Any] = {
            "cycles": 0,
            "upkeeps": 0,
            "price_failures": 0,
            "errors": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the keeper loop."""
        logger.info(
            "Starting keeper loop",
            extra={"poll_interval": self.poll_interval_seconds},
        )
        self._running = True
        await self._run()

    async def stop(self) -> None:
        """Stop the keeper loop."""
        logger.info("Stopping keeper loop")
        self._running = False

    async def _run(self) -> None:
        """Main loop."""
        while self._running:
            try:
                await self.cycle()
            except Exception as e:
                logger.error(f"Keeper cycle error: {e}", exc_info=True)
                self._stats["errors"] += 1

            await asyncio.sleep(self.poll_interval_seconds)

    async def cycle(self) -> None:
        """Single polling cycle."""
        self._stats["cycles"] += 1
        logger.debug(f"Keeper cycle #{self._stats['cycles']}")

        try:
            assessment = await asyncio.to_thread(self.trigger.perform_upkeep)
        except PriceUnavailable as e:
            self._stats["price_failures"] += 1
            logger.warning(f"Upkeep skipped, price unavailable: {e}")
            return

        if assessment is not None:
            self._stats["upkeeps"] += 1
            self._last_upkeep = time.time()
            logger.info(
                f"Upkeep performed: risk {assessment.score}",
                extra={"deviation": assessment.deviation, "bursting": assessment.bursting},
            )

    def get_stats(self) -> dict[str, Any]:
        """Get keeper loop statistics."""
        return {
            **self._stats,
            "running": self._running,
            "last_upkeep": self._last_upkeep,
        }
