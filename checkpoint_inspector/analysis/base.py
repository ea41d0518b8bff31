# checkpoint_inspector/analysis/base.py
"""
Analysis models: charts, write-once request slots and cancellation tokens.
"""

from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

from checkpoint_inspector.config import InspectorConfig
from checkpoint_inspector.errors import AnalysisCancelled, AnalysisError
from checkpoint_inspector.model_formats.tensor import TensorDescriptor

T = TypeVar("T")


@dataclass
class BarChart:
    """Binned counts over ``[left, right]``.

    The ``continues_past_*`` flags are set when a bound was estimated from
    percentiles, so values exist beyond it (they are clamped into the edge bin).
    """

    bins: List[int] = field(default_factory=lambda: [0])
    left: float = 0.0
    right: float = 1.0
    continues_past_left: bool = True
    continues_past_right: bool = True

    @property
    def bin_count(self) -> int:
        return len(self.bins)

    def bin_edges(self) -> List[float]:
        width = (self.right - self.left) / len(self.bins)
        return [self.left + i * width for i in range(len(self.bins) + 1)]


@dataclass
class Histogram:
    min: float = 0.0
    max: float = 0.0
    chart: BarChart = field(default_factory=BarChart)


@dataclass
class Spectrum:
    chart: BarChart = field(default_factory=BarChart)


class CancelToken:
    """Cooperative cancellation.

    Cancelled once ``cancel()`` is called or, when created with a ``target``,
    once the target has been garbage collected.
    """

    def __init__(self, target: Optional[object] = None):
        self._ref = weakref.ref(target) if target is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._ref is not None and self._ref() is None

    def check(self) -> None:
        """Raise ``AnalysisCancelled`` if cancelled."""
        if self.cancelled:
            raise AnalysisCancelled()


class RequestState(Enum):
    NOT_REQUESTED = "not_requested"
    REQUESTED = "requested"
    COMPUTING = "computing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RequestState.COMPLETED, RequestState.FAILED})


class RequestSlot(Generic[T]):
    """One result of an analysis request: a go-gate plus a write-once value."""

    def __init__(self, requested: bool = True):
        self._lock = threading.Lock()
        self._gate = threading.Event()
        self._done = threading.Event()
        self._state = RequestState.NOT_REQUESTED
        self._result: Optional[T] = None
        self._error: Optional[BaseException] = None
        if requested:
            self.request()

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def result(self) -> Optional[T]:
        return self._result

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def request(self) -> None:
        """Open the gate; a no-op unless the slot is NOT_REQUESTED."""
        with self._lock:
            if self._state is RequestState.NOT_REQUESTED:
                self._state = RequestState.REQUESTED
                self._gate.set()

    def wait_requested(self, timeout: Optional[float] = None) -> bool:
        return self._gate.wait(timeout)

    def start(self) -> None:
        with self._lock:
            if self._state is not RequestState.REQUESTED:
                raise AnalysisError(f"cannot start computation in state {self._state.value}")
            self._state = RequestState.COMPUTING

    def complete(self, result: T) -> None:
        with self._lock:
            if self._state in TERMINAL_STATES:
                raise AnalysisError("already computed")
            self._result = result
            self._state = RequestState.COMPLETED
        self._done.set()

    def fail(self, error: BaseException) -> bool:
        """Record ``error`` unless the slot already finished; True if recorded."""
        with self._lock:
            if self._state in TERMINAL_STATES:
                return False
            self._error = error
            self._state = RequestState.FAILED
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the slot is COMPLETED or FAILED."""
        return self._done.wait(timeout)


class AnalysisRequest:
    """Histogram and spectrum computation for one selected tensor.

    A changed selection creates a new request; the worker only references
    requests weakly, so dropping the last reference cancels the request.
    """

    def __init__(
        self,
        tensor: TensorDescriptor,
        max_bin_count: int = 64,
        *,
        histogram: bool = True,
        spectrum: bool = True,
    ):
        if max_bin_count < 1:
            raise ValueError(f"max_bin_count must be >= 1, got {max_bin_count}")
        self.tensor = tensor
        self.max_bin_count = max_bin_count
        self.histogram: RequestSlot[Histogram] = RequestSlot(histogram)
        # spectra only exist for matrices
        self.spectrum: RequestSlot[Spectrum] = RequestSlot(spectrum and tensor.ndim == 2)
        self._error_lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._finished = threading.Event()

    @classmethod
    def for_tensor(cls, tensor: TensorDescriptor, config: InspectorConfig) -> "AnalysisRequest":
        """Create a request whose gates open automatically for small tensors."""
        n = tensor.n_elements
        return cls(
            tensor,
            config.max_bin_count,
            histogram=n <= config.histogram_auto_limit,
            spectrum=n <= config.spectrum_auto_limit,
        )

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def set_error(self, error: BaseException) -> bool:
        """Store the first error only; True if this call stored it."""
        with self._error_lock:
            if self._error is not None:
                return False
            self._error = error
            return True

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def mark_finished(self) -> None:
        self._finished.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has finished with this request."""
        return self._finished.wait(timeout)

    def summary(self) -> dict[str, Any]:
        return {
            "tensor": self.tensor,
            "histogram": self.histogram.result,
            "histogram_state": self.histogram.state,
            "spectrum": self.spectrum.result,
            "spectrum_state": self.spectrum.state,
            "error": self.error,
        }
