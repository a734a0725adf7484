"""Small shared helpers."""

from .timing import Stopwatch, parse_duration, utc_timestamp

__all__ = ["Stopwatch", "parse_duration", "utc_timestamp"]
