# checkpoint_inspector/analysis/worker.py
"""
Background analysis worker.

The caller submits ``AnalysisRequest`` objects; only the newest one is kept.
The worker holds requests weakly, so a request the caller drops is cancelled
at the next cooperative check and its slots are never written.
"""

from __future__ import annotations

import threading
import weakref
from typing import List, Optional, Tuple, Union

import numpy as np
from loguru import logger

from checkpoint_inspector.analysis.base import (
    AnalysisRequest,
    CancelToken,
    Histogram,
    RequestSlot,
    RequestState,
    Spectrum,
)
from checkpoint_inspector.analysis.histogram import compute_histogram
from checkpoint_inspector.analysis.spectrum import compute_spectrum
from checkpoint_inspector.errors import AnalysisCancelled, AnalysisError, InspectorError
from checkpoint_inspector.model_formats.source import LockedSource, ModuleSource
from checkpoint_inspector.model_formats.tensor import TensorDescriptor
from checkpoint_inspector.observability import Timer

# seconds between checks while a request waits for a gate to open
POLL_INTERVAL = 0.05


class LatestCell:
    """Single-slot hand-off: ``put`` overwrites, ``take`` blocks for a value."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._ref: Optional[weakref.ReferenceType] = None
        self._closed = False

    def put(self, request: AnalysisRequest) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("analysis worker is closed")
            self._ref = weakref.ref(request)
            self._cond.notify_all()

    def take(self, timeout: Optional[float] = None) -> Optional[weakref.ReferenceType]:
        """Newest reference, or None once closed (or on timeout)."""
        with self._cond:
            while self._ref is None and not self._closed:
                if not self._cond.wait(timeout):
                    return None
            if self._closed:
                return None
            ref, self._ref = self._ref, None
            return ref

    @property
    def pending(self) -> bool:
        return self._ref is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._ref = None
            self._cond.notify_all()


class AnalysisWorker:
    """Owns the analysis thread and the cell it reads requests from."""

    def __init__(self, source: Union[ModuleSource, LockedSource], *, name: str = "analysis-worker"):
        self.source = source if isinstance(source, LockedSource) else LockedSource(source)
        self._cell = LatestCell()
        self._current: Optional[CancelToken] = None
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> "AnalysisWorker":
        self._thread.start()
        return self

    def submit(self, request: AnalysisRequest) -> None:
        """Hand ``request`` to the worker, replacing any not yet picked up."""
        self._cell.put(request)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def close(self) -> None:
        """Stop the loop; an in-flight computation is cancelled at its next check."""
        self._cell.close()
        current = self._current
        if current is not None:
            current.cancel()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def __enter__(self) -> "AnalysisWorker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        self.join()

    # -- worker thread --------------------------------------------------------

    def _run(self) -> None:
        logger.debug("Analysis worker started")
        while True:
            ref = self._cell.take()
            if ref is None:
                break
            self._process(ref)
        logger.debug("Analysis worker stopped")

    def _process(self, ref: weakref.ReferenceType) -> None:
        request = ref()
        if request is None:
            logger.warning("Skipping analysis request dropped before it was picked up")
            return
        token = CancelToken(request)
        tensor = request.tensor
        max_bins = request.max_bin_count
        slots: List[Tuple[str, RequestSlot]] = [("histogram", request.histogram)]
        if tensor.ndim == 2:
            slots.append(("spectrum", request.spectrum))
        # only the token and ``ref`` may outlive this point
        del request

        self._current = token
        data: Optional[np.ndarray] = None
        try:
            while True:
                pending = [(n, s) for n, s in slots if not s.done]
                if not pending:
                    break
                ready = next(((n, s) for n, s in pending if s.state is RequestState.REQUESTED), None)
                if ready is None:
                    if not self._wait_for_gate([s for _, s in pending], token):
                        logger.debug("Leaving analysis of {tensor} unfinished", tensor=tensor)
                        return
                    continue
                name, slot = ready
                slot.start()
                if data is None:
                    data = self._decode(tensor, token)
                with Timer(name) as timer:
                    if name == "histogram":
                        self._histogram(slot, data, max_bins, token)
                    else:
                        self._spectrum(slot, data, tensor, max_bins, token)
                logger.debug("{name} computed in {ms:.1f} ms", name=name, ms=timer.duration_ms)
        except Exception as e:  # noqa: BLE001
            self._record_failure(ref, slots, e)
        finally:
            self._current = None

        request = ref()
        if request is not None:
            request.mark_finished()

    def _wait_for_gate(self, slots: List[RequestSlot], token: CancelToken) -> bool:
        """Wait until one slot is requested; False if the request was superseded."""
        while True:
            if any(s.state is RequestState.REQUESTED for s in slots):
                return True
            if token.cancelled or self._cell.pending or self._cell.closed:
                return False
            slots[0].wait_requested(POLL_INTERVAL)

    def _decode(self, tensor: TensorDescriptor, token: CancelToken) -> np.ndarray:
        with Timer("decode") as timer:
            data = self.source.tensor_as_f32(tensor, token)
        logger.debug(
            "Decoded {n} elements of {dtype} in {ms:.1f} ms",
            n=data.size,
            dtype=tensor.dtype,
            ms=timer.duration_ms,
        )
        return data

    @staticmethod
    def _histogram(slot: RequestSlot, data: np.ndarray, max_bins: int, token: CancelToken) -> None:
        if data.size == 0:
            slot.complete(Histogram())
            raise AnalysisError("tensor is empty")
        histogram = compute_histogram(data, max_bins, cancel=token)
        token.check()
        slot.complete(histogram)

    @staticmethod
    def _spectrum(
        slot: RequestSlot,
        data: np.ndarray,
        tensor: TensorDescriptor,
        max_bins: int,
        token: CancelToken,
    ) -> None:
        if data.size == 0:
            slot.complete(Spectrum())
            raise AnalysisError("tensor is empty")
        spectrum = compute_spectrum(data, tensor.shape, max_bins, cancel=token)
        token.check()
        slot.complete(spectrum)

    @staticmethod
    def _record_failure(ref: weakref.ReferenceType, slots: List[Tuple[str, RequestSlot]], error: Exception) -> None:
        if isinstance(error, AnalysisCancelled):
            logger.warning("Analysis request cancelled")
        elif not isinstance(error, InspectorError):
            logger.exception("Unexpected failure in analysis worker")
            error = AnalysisError(f"analysis failed: {error}")
        request = ref()
        if request is None:
            return
        for _, slot in slots:
            if slot.state in (RequestState.REQUESTED, RequestState.COMPUTING):
                slot.fail(error)
        request.set_error(error)


def start_analysis_worker(source: Union[ModuleSource, LockedSource]) -> AnalysisWorker:
    """Spawn the analysis thread for ``source`` and return its handle."""
    return AnalysisWorker(source).start()
