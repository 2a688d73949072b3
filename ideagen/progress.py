import asyncio
import logging
import math
import time
from typing import Callable, Dict, Optional, Sequence, Tuple

from ideagen.models import ProgressSample

logger = logging.getLogger("ideagen")

# Percentage band per workflow phase. The last band stops short of 100:
# 100 is only ever emitted by complete().
PHASE_BANDS: Dict[str, Tuple[float, float]] = {
    "validating": (0.0, 5.0),
    "debiting": (5.0, 15.0),
    "generating": (15.0, 80.0),
    "processing": (80.0, 90.0),
    "saving": (90.0, 95.0),
}

# One group per quartile: 0-25, 25-50, 50-75, 75-100
QUARTILE_LABELS: Tuple[Tuple[str, ...], ...] = (
    ("Reading your idea...", "Checking your credits..."),
    ("Researching the market...", "Crunching the numbers...", "Looking at competitors..."),
    ("Structuring the insights...", "Connecting the dots..."),
    ("Polishing the report...", "Almost there..."),
)

COMPLETED_LABEL = "Done!"


class ProgressEstimator:
    """
    Synthetic, phase-driven progress for one generation.

    The remote generator reports no progress, so the percentage here says
    nothing about real completion. The orchestrator reports phase boundaries;
    between them a ticker eases the percentage toward the top of the current
    band. Samples are monotonic, clamped to [0, 100], and nothing is emitted
    after close().
    """

    def __init__(
        self,
        on_sample: Callable[[ProgressSample], None],
        *,
        bands: Dict[str, Tuple[float, float]] = PHASE_BANDS,
        labels: Sequence[Sequence[str]] = QUARTILE_LABELS,
        tick_interval: float = 0.25,
        band_duration: float = 8.0,
        label_rotation: float = 4.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if len(labels) != 4 or not all(labels):
            raise ValueError("labels must hold one non-empty group per quartile")
        self.on_sample = on_sample
        self.bands = dict(bands)
        self.labels = [tuple(group) for group in labels]
        self.tick_interval = tick_interval
        self.band_duration = band_duration
        self.label_rotation = label_rotation
        self._clock = clock

        self._percent = 0.0
        self._phase: Optional[str] = None
        self._phase_started = 0.0
        self._started_at = clock()
        self._last: Optional[ProgressSample] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self._finished = False

    @property
    def percent(self) -> float:
        return self._percent

    @property
    def phase(self) -> Optional[str]:
        return self._phase

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_sample(self) -> Optional[ProgressSample]:
        return self._last

    def start(self) -> None:
        """Start the ticker on the running loop. Idempotent."""
        if self._task is not None or self._closed:
            return
        self._started_at = self._clock()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.tick_interval)
            self.tick()

    def enter_phase(self, phase: str) -> None:
        if phase not in self.bands:
            raise ValueError(f"Unknown progress phase: {phase}")
        if self._closed:
            return
        self._phase = phase
        self._phase_started = self._clock()
        self._advance(self.bands[phase][0])

    def tick(self) -> None:
        if self._closed or self._phase is None:
            return
        low, high = self.bands[self._phase]
        elapsed = max(0.0, self._clock() - self._phase_started)
        eased = 1.0 - math.exp(-elapsed / self.band_duration) if self.band_duration > 0 else 1.0
        self._advance(low + (high - low) * eased)

    def complete(self) -> None:
        if self._closed:
            return
        self._advance(100.0, label=COMPLETED_LABEL)
        self._finished = True
        self.close()

    def fail(self, label: str) -> None:
        """Emit a final sample at the current percentage and stop."""
        if self._closed:
            return
        self._emit(ProgressSample(percent=round(self._percent, 1), phase_label=label))
        self._finished = True
        self.close()

    def close(self) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def label_for(self, percent: float) -> str:
        quartile = min(int(percent // 25), 3)
        group = self.labels[quartile]
        if self.label_rotation <= 0:
            return group[0]
        turn = int(max(0.0, self._clock() - self._started_at) // self.label_rotation)
        return group[turn % len(group)]

    def _advance(self, value: float, *, label: Optional[str] = None) -> None:
        value = min(100.0, max(0.0, value))
        if value < self._percent:
            value = self._percent
        self._percent = value
        self._emit(ProgressSample(percent=round(value, 1), phase_label=label or self.label_for(value)))

    def _emit(self, sample: ProgressSample) -> None:
        if self._closed or sample == self._last:
            return
        self._last = sample
        try:
            self.on_sample(sample)
        except Exception as e:
            logger.warning(f"[PROGRESS] sample listener failed: {e!r}")
