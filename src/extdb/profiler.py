"""
Query profiling hooks.

A profiler observes every statement execution:

- `on_before(statement, values)` just before the statement runs
- `on_success(statement, values, duration)` once it has executed
- `on_failure(statement, values, duration, error)` if the driver failed

The connection calls profilers through `notify()`, which logs and
suppresses anything a profiler raises: a broken observer never turns a
successful query into a failed one, and never masks a query failure.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    'ProfilerInterface',
    'NullProfiler',
    'Profiler',
    'LoggingProfiler',
    'ProfileEvent',
    'notify',
]

logger = logging.getLogger(__name__)


class ProfilerInterface(ABC):
    """Observer notified around each statement execution."""

    @abstractmethod
    def on_before(self, statement: str, values: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def on_success(self, statement: str, values: dict[str, Any], duration: float) -> None:
        ...

    @abstractmethod
    def on_failure(self, statement: str, values: dict[str, Any], duration: float,
                   error: BaseException) -> None:
        ...


class NullProfiler(ProfilerInterface):
    """Profiler that records nothing."""

    def on_before(self, statement, values):
        pass

    def on_success(self, statement, values, duration):
        pass

    def on_failure(self, statement, values, duration, error):
        pass


@dataclass(slots=True)
class ProfileEvent:
    """One profiled execution."""
    statement: str
    values: dict[str, Any]
    start: float
    end: float | None = None
    outcome: str | None = None
    error: BaseException | None = field(default=None, repr=False)

    @property
    def duration(self) -> float | None:
        if self.end is None:
            return None
        return self.end - self.start


class Profiler(ProfilerInterface):
    """Profiler that keeps every execution in memory while active.

    Usage:
        profiler = Profiler(active=True)
        cn.set_profiler(profiler)
        cn.fetch_all('SELECT * FROM users')
        for event in profiler.get_profiles():
            print(event.duration, event.statement)
    """

    def __init__(self, active: bool = False, clock=time.time) -> None:
        self._active = active
        self._clock = clock
        self._profiles: list[ProfileEvent] = []
        self._pending: ProfileEvent | None = None

    def set_active(self, active: bool) -> None:
        self._active = bool(active)

    def is_active(self) -> bool:
        return self._active

    def get_profiles(self) -> list[ProfileEvent]:
        """Return the recorded events, oldest first."""
        return list(self._profiles)

    def reset_profiles(self) -> None:
        self._profiles = []
        self._pending = None

    def on_before(self, statement, values):
        if not self._active:
            return
        self._pending = ProfileEvent(statement, dict(values), start=self._clock())

    def on_success(self, statement, values, duration):
        self._finish(statement, values, duration, 'success')

    def on_failure(self, statement, values, duration, error):
        self._finish(statement, values, duration, 'failure', error)

    def _finish(self, statement, values, duration, outcome, error=None):
        if not self._active:
            return
        event = self._pending
        if event is None or event.statement != statement:
            end = self._clock()
            event = ProfileEvent(statement, dict(values), start=end - duration)
        event.end = event.start + duration
        event.outcome = outcome
        event.error = error
        self._profiles.append(event)
        self._pending = None


class LoggingProfiler(ProfilerInterface):
    """Profiler that writes each execution to a logger."""

    def __init__(self, log: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self.log = log or logger
        self.level = level

    def on_before(self, statement, values):
        self.log.log(self.level, f'Executing:\n{statement}\nvalues: {values}')

    def on_success(self, statement, values, duration):
        self.log.log(self.level, f'Completed in {duration:.4f}s:\n{statement}')

    def on_failure(self, statement, values, duration, error):
        self.log.log(max(self.level, logging.WARNING),
                     f'Failed after {duration:.4f}s: {error}\n{statement}\nvalues: {values}')


def notify(profiler: ProfilerInterface, hook: str, *args: Any) -> None:
    """Call a profiler hook, isolating the caller from profiler errors."""
    try:
        getattr(profiler, hook)(*args)
    except Exception:
        logger.warning(f'Profiler {type(profiler).__name__}.{hook} raised; ignoring',
                       exc_info=True)
