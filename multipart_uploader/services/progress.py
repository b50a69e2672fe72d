# services/progress.py
import logging
import math
from typing import Callable, Optional

from ..models.upload_models import ProgressState

logger = logging.getLogger(__name__)


def aggregate(part_number: int, part_fraction: float, total_parts: int) -> int:
    """Overall percent for a sequential upload currently inside ``part_number``"""
    if total_parts <= 0:
        raise ValueError(f"total_parts must be > 0, got {total_parts}")
    fraction = min(max(part_fraction, 0.0), 1.0)
    raw = ((part_number - 1) + fraction) / total_parts * 100
    # half-up rounding
    percent = math.floor(raw + 0.5)
    return min(max(percent, 0), 100)


class ProgressTracker:
    """Sole consumer of one session's progress events.

    Each event is a (part number, fraction) pair coming from the part
    uploader. The tracker folds them into a ``ProgressState`` and hands every
    change to ``on_update``. Once closed it accepts nothing more; a new
    session gets a new tracker.
    """

    def __init__(self, total_parts: int, on_update: Optional[Callable[[ProgressState], None]] = None):
        if total_parts <= 0:
            raise ValueError(f"total_parts must be > 0, got {total_parts}")
        self.state = ProgressState(total_parts=total_parts)
        self._on_update = on_update
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, part_number: int, fraction: float) -> ProgressState:
        if self._closed:
            raise RuntimeError("progress stream is closed")
        if part_number < self.state.current_part_number:
            logger.debug(f"Ignoring stale progress for part {part_number}")
            return self.state

        fraction = min(max(fraction, 0.0), 1.0)
        if part_number == self.state.current_part_number:
            fraction = max(fraction, self.state.current_part_fraction)

        percent = aggregate(part_number, fraction, self.state.total_parts)
        self.state = ProgressState(
            current_part_number=part_number,
            current_part_fraction=fraction,
            total_parts=self.state.total_parts,
            overall_percent=max(percent, self.state.overall_percent),
        )
        if self._on_update is not None:
            self._on_update(self.state)
        return self.state

    def finish(self) -> ProgressState:
        """Mark the upload as complete (100%) and close the stream"""
        if not self._closed:
            self.state = ProgressState(
                current_part_number=self.state.total_parts,
                current_part_fraction=1.0,
                total_parts=self.state.total_parts,
                overall_percent=100,
            )
            if self._on_update is not None:
                self._on_update(self.state)
        self.close()
        return self.state

    def close(self) -> None:
        self._closed = True
