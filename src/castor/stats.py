"""Process-lifetime counters for invocation outcomes."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Final

log = logging.getLogger(__name__)

SUCCESS: Final[str] = "success"
FAILURE: Final[str] = "failure"
SWITCH: Final[str] = "switch"
RETRY_OVERLOAD: Final[str] = "retry_overload"
RETRY_INVALID: Final[str] = "retry_invalid"
CROP: Final[str] = "crop"
TOTAL: Final[str] = "total"

# name -> (description, symbol); order is display order
_STAT_TYPES: Final[dict[str, tuple[str, str]]] = {
    SUCCESS: ("LLM invocation succeeded", ">"),
    FAILURE: ("LLM invocation failed so no data produced", "!"),
    SWITCH: ("Switched to the next ranked model tier", "+"),
    RETRY_OVERLOAD: ("Retried calling LLM due to overload or no response", "?"),
    RETRY_INVALID: ("Retried calling LLM due to an invalid response", "~"),
    CROP: ("Cropped prompt due to excessive size before resending", "-"),
}


@dataclass(frozen=True)
class StatEntry:
    """One counter in a statistics snapshot."""

    name: str
    description: str
    symbol: str
    count: int


class InvocationStats:
    """Monotonic counters, safe to increment from concurrent calls."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = dict.fromkeys(_STAT_TYPES, 0)

    def _record(self, name: str) -> None:
        with self._lock:
            self._counts[name] += 1
        log.debug("LLM event %s (%s)", _STAT_TYPES[name][1], name)

    def record_success(self) -> None:
        self._record(SUCCESS)

    def record_failure(self) -> None:
        self._record(FAILURE)

    def record_switch(self) -> None:
        self._record(SWITCH)

    def record_overload_retry(self) -> None:
        self._record(RETRY_OVERLOAD)

    def record_invalid_retry(self) -> None:
        self._record(RETRY_INVALID)

    def record_crop(self) -> None:
        self._record(CROP)

    def counts(self) -> dict[str, int]:
        """Return a copy of the current counts."""
        with self._lock:
            return dict(self._counts)

    def snapshot(self, *, include_total: bool = False) -> tuple[StatEntry, ...]:
        """Return counts together with their display labels.

        With *include_total* a trailing ``total`` entry sums successes and
        failures.
        """
        counts = self.counts()
        entries = [
            StatEntry(name=name, description=desc, symbol=symbol, count=counts[name])
            for name, (desc, symbol) in _STAT_TYPES.items()
        ]
        if include_total:
            entries.append(
                StatEntry(
                    name=TOTAL,
                    description="Total successes + failures",
                    symbol="=",
                    count=counts[SUCCESS] + counts[FAILURE],
                )
            )
        return tuple(entries)

    def format_table(self, *, include_counts: bool = True) -> str:
        """Render the snapshot as an aligned plain-text table."""
        entries = self.snapshot(include_total=include_counts)
        width = max(len(e.description) for e in entries)
        header = f"{'Symbol':<7}| {'Description':<{width}}"
        if include_counts:
            header += " | Count"
        lines = [header, "-" * len(header)]
        for e in entries:
            line = f"{e.symbol:<7}| {e.description:<{width}}"
            if include_counts:
                line += f" | {e.count}"
            lines.append(line)
        return "\n".join(lines)
