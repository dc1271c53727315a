"""Time logging infrastructure for coarse profiling of operator inversion.

Published Classes
-----------------
:class:`TimingEvent`
    Record of a single start/stop/progress event.

:class:`TimeLogger`
    Accumulates wall-clock durations per event name.

Module Attributes
-----------------
``default_timelogger``
    Process-wide logger shared by every session that is not given its own.
    Totals are therefore summed across all sessions in the process.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

import attrs

SETUP_EVENT = "operator_setup"
INVERT_EVENT = "operator_invert"
PACKING_EVENT = "operator_packing"

_VERBOSITY_LEVELS = {"default", "verbose", "debug", None}


@attrs.define(frozen=True)
class TimingEvent:
    """Record of a single timing event.

    Attributes
    ----------
    name : str
        Identifier for the event (e.g., 'operator_setup')
    event_type : str
        Type of event: 'start', 'stop', or 'progress'
    timestamp : float
        Wall-clock time from time.perf_counter()
    metadata : dict
        Optional metadata (sizes, counts, messages)
    """
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(
        validator=attrs.validators.in_({'start', 'stop', 'progress'})
    )
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)


class TimeLogger:
    """Callback-based timing system for inversion sessions.

    Parameters
    ----------
    verbosity : str or None, default='default'
        Output verbosity level. Options:
        - None: no-op, nothing is recorded
        - 'default': Aggregate times only
        - 'verbose': Print each duration when an event stops
        - 'debug': Print every start/stop/progress and keep the event list

    Attributes
    ----------
    verbosity : str or None
        Current verbosity level
    events : list[TimingEvent]
        Chronological list of recorded events. Only filled in debug mode,
        since packing events fire on every Krylov iteration.

    Notes
    -----
    Durations accumulate per event name until read with
    :meth:`reset_time`. Nested use of the *same* event name is not
    supported; the most recent start wins.
    """

    def __init__(self, verbosity: Optional[str] = 'default') -> None:
        if verbosity == 'None':
            verbosity = None
        if verbosity not in _VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be None, 'default', 'verbose', or "
                f"'debug', got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: list[TimingEvent] = []
        self._active_starts: dict[str, float] = {}
        self._totals: dict[str, float] = {}
        self._counts: dict[str, int] = {}

    def set_verbosity(self, verbosity: Optional[str]) -> None:
        """Change the verbosity level; totals are preserved."""
        if verbosity == 'None':
            verbosity = None
        if verbosity not in _VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be None, 'default', 'verbose', or "
                f"'debug', got '{verbosity}'"
            )
        self.verbosity = verbosity

    def _record(self, name, event_type, timestamp, metadata):
        if self.verbosity == 'debug':
            self.events.append(
                TimingEvent(
                    name=name,
                    event_type=event_type,
                    timestamp=timestamp,
                    metadata=metadata,
                )
            )

    def start_event(self, event_name: str, **metadata: Any) -> None:
        """Record the start of a timed operation.

        Parameters
        ----------
        event_name : str
            Identifier for this event
        **metadata : Any
            Optional metadata to store with event
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        timestamp = time.perf_counter()
        self._record(event_name, 'start', timestamp, metadata)
        self._active_starts[event_name] = timestamp

        if self.verbosity == 'debug':
            print(f"[DEBUG] Started: {event_name}")

    def stop_event(self, event_name: str, **metadata: Any) -> None:
        """Record the end of a timed operation.

        Parameters
        ----------
        event_name : str
            Identifier matching a previous start_event call
        **metadata : Any
            Optional metadata to store with event

        Notes
        -----
        A stop without a matching start is ignored, with a warning printed
        in debug mode.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        timestamp = time.perf_counter()
        self._record(event_name, 'stop', timestamp, metadata)

        if event_name in self._active_starts:
            duration = timestamp - self._active_starts.pop(event_name)
            self._totals[event_name] = (
                self._totals.get(event_name, 0.0) + duration
            )
            self._counts[event_name] = self._counts.get(event_name, 0) + 1

            if self.verbosity == 'debug':
                print(f"[DEBUG] Stopped: {event_name} ({duration:.3f}s)")
            elif self.verbosity == 'verbose':
                print(f"{event_name}: {duration:.3f}s")
        else:
            if self.verbosity == 'debug':
                print(f"[DEBUG] Warning: stop_event('{event_name}') "
                      "without matching start")

    def progress(
        self, event_name: str, message: str, **metadata: Any
    ) -> None:
        """Record a progress update within an operation.

        Progress events don't require matching start/stop and are only
        printed in debug mode.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")
        if self.verbosity is None:
            return

        metadata_with_msg = dict(metadata)
        metadata_with_msg['message'] = message
        self._record(
            event_name, 'progress', time.perf_counter(), metadata_with_msg
        )

        if self.verbosity == 'debug':
            print(f"[DEBUG] Progress: {event_name} - {message}")

    @contextmanager
    def timed(self, event_name: str, **metadata: Any):
        """Context manager pairing :meth:`start_event` and
        :meth:`stop_event`, also when the body raises."""
        self.start_event(event_name, **metadata)
        try:
            yield
        finally:
            self.stop_event(event_name)

    def get_time(self, event_name: str) -> float:
        """Return the accumulated duration of ``event_name`` in seconds."""
        return self._totals.get(event_name, 0.0)

    def get_count(self, event_name: str) -> int:
        """Return how many times ``event_name`` has completed."""
        return self._counts.get(event_name, 0)

    def reset_time(self, event_name: str) -> float:
        """Return the accumulated duration of ``event_name`` and zero it."""
        self._counts.pop(event_name, None)
        return self._totals.pop(event_name, 0.0)

    def reset(self) -> None:
        """Forget all totals, counts, pending starts and events."""
        self.events.clear()
        self._active_starts.clear()
        self._totals.clear()
        self._counts.clear()

    def get_aggregate_durations(self) -> Dict[str, float]:
        """Return a copy of the accumulated durations by event name."""
        return dict(self._totals)

    def print_summary(self) -> None:
        """Print accumulated durations.

        Only prints in 'default' mode; 'verbose' and 'debug' have already
        printed every duration as it occurred.
        """
        if self.verbosity == 'default':
            durations = self.get_aggregate_durations()
            if durations:
                print("\nTiming Summary:")
                for name, duration in sorted(durations.items()):
                    print(f"  {name}: {duration:.3f}s")


def report_time(time_logger: Optional[TimeLogger] = None) -> Dict[str, float]:
    """Read, reset and print the inversion timing counters.

    Parameters
    ----------
    time_logger
        Logger to report from. Defaults to :data:`default_timelogger`.

    Returns
    -------
    dict
        Seconds spent in setup, invert and packing since the last report.
        Packing time is also contained in the invert time.
    """
    if time_logger is None:
        time_logger = default_timelogger
    times = {
        "setup": time_logger.reset_time(SETUP_EVENT),
        "invert": time_logger.reset_time(INVERT_EVENT),
        "packing": time_logger.reset_time(PACKING_EVENT),
    }
    if time_logger.verbosity is not None:
        print(
            f"InvertibleOperator timing :: Setup {times['setup']:.6g} , "
            f"Invert(packing) {times['invert']:.6g}"
            f"({times['packing']:.6g})"
        )
    return times


default_timelogger = TimeLogger()
