"""Wall-clock helpers shared by the executor and the control layer."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone

from ..errors import ConfigurationError

_DURATION = re.compile(r"^(?:(?P<days>\d+)-)?(?P<clock>\d+(?::\d+){0,2})$")


def parse_duration(value: str | float | int | None) -> float | None:
    """Return a duration in seconds.

    Numbers are taken as seconds.  Strings follow the job-scheduler
    conventions ``SS``, ``MM:SS``, ``HH:MM:SS`` and ``D-HH:MM:SS``; with a day
    prefix the clock part is always read as hours first.

    >>> parse_duration("01:30:00")
    5400.0
    >>> parse_duration("1-00:00:10")
    86410.0
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError("max_time must be a duration, not a boolean")
    if isinstance(value, int | float):
        seconds = float(value)
    elif not isinstance(value, str):
        raise ConfigurationError(
            f"max_time must be seconds or a duration string, not {type(value).__name__}"
        )
    else:
        match = _DURATION.match(value.strip())
        if match is None:
            raise ConfigurationError(
                f"Cannot parse duration {value!r}; expected [D-]HH:MM:SS"
            )
        parts = [int(p) for p in match.group("clock").split(":")]
        single = len(parts) == 1 and match.group("days") is None
        days = int(match.group("days") or 0)
        if match.group("days") is not None:
            # D-HH, D-HH:MM, D-HH:MM:SS
            parts = parts + [0] * (3 - len(parts))
        else:
            parts = [0] * (3 - len(parts)) + parts
        hours, minutes, secs = parts
        if not single and (minutes >= 60 or secs >= 60):
            raise ConfigurationError(f"Invalid clock value in duration {value!r}")
        seconds = float(((days * 24 + hours) * 60 + minutes) * 60 + secs)
    if seconds <= 0:
        raise ConfigurationError("max_time must be positive")
    return seconds


def utc_timestamp() -> str:
    """Current UTC time in ISO-8601 form, to the second."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class Stopwatch:
    """Monotonic stopwatch with an optional budget."""

    def __init__(self, budget: float | None = None, *, offset: float = 0.0) -> None:
        self._start = time.perf_counter()
        self._budget = budget
        self._offset = offset

    @property
    def elapsed(self) -> float:
        """Seconds since the stopwatch started in this process."""

        return time.perf_counter() - self._start

    @property
    def total(self) -> float:
        """Elapsed time plus time carried over from earlier invocations."""

        return self._offset + self.elapsed

    def expired(self) -> bool:
        """Whether :attr:`total` has reached the budget."""

        return self._budget is not None and self.total >= self._budget
