"""Deterministic progress computation.

Pure functions and a small value holder with no external dependencies.
"""


def synthetic_progress(elapsed: float, max_wait: float, start: int = 30, cap: int = 95) -> int:
    """Estimate progress from elapsed time when the server publishes none.

    Grows linearly from ``start`` at t=0 to ``cap`` at t=max_wait and never
    exceeds ``cap``. Only a ready report is ever shown at 100, so ``cap`` must
    stay below it.

    Args:
        elapsed: Seconds since polling began
        max_wait: Seconds after which the client gives up
        start: Value at t=0
        cap: Upper bound (< 100)

    Returns:
        Integer percentage in [start, cap]
    """
    if max_wait <= 0:
        return cap
    fraction = max(0.0, elapsed) / max_wait
    return min(int(start + fraction * (cap - start)), cap)


class ProgressHighWaterMark:
    """Displayed progress: the maximum of every value offered so far.

    Server progress, synthetic estimates and stage milestones all go through
    ``offer``; the displayed value can only move up. ``reset`` is the one
    deliberate exception, used when the user retries a failed report.
    """

    def __init__(self, initial: int = 0):
        self._value = _clamp(initial)

    @property
    def value(self) -> int:
        return self._value

    def offer(self, candidate: int | float | None) -> int:
        if candidate is not None:
            self._value = max(self._value, _clamp(candidate))
        return self._value

    def reset(self, floor: int) -> int:
        self._value = _clamp(floor)
        return self._value


def _clamp(value: int | float) -> int:
    return max(0, min(int(value), 100))
