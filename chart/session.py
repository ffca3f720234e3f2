"""Resize-driven re-rendering of a slope chart.

Every pass recomputes the layout from scratch and then diffs the rendered
elements against the previous pass, so callers only touch what changed.
Resize requests are coalesced with a trailing-edge debounce.
"""

from __future__ import annotations

import logging
import threading
from collections import abc
from typing import Any, Callable, Dict, Optional, Sequence

from analysis.slope_flow import FlowLayout, FlowRecord, compute_layout
from chart.config import ChartConfigError, SlopeChartConfig
from slope_chart_svg import RenderDiff, build_context, diff_elements, render_elements

logger = logging.getLogger(__name__)

DEFAULT_RESIZE_DELAY = 0.25


class Debouncer:
    """Trailing-edge debounce around `callback`.

    Each call cancels the pending one and schedules a fresh timer, so only
    the last call within `delay` seconds runs. `timer_factory` follows the
    `threading.Timer(interval, function, args, kwargs)` signature.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[..., Any],
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = delay
        self.callback = callback
        self._timer_factory = timer_factory
        self._timer = None
        self._pending: Optional[tuple] = None
        self._lock = threading.Lock()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = (args, kwargs)
            self._timer = self._timer_factory(self.delay, self._fire)
            if hasattr(self._timer, "daemon"):
                self._timer.daemon = True
            self._timer.start()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def flush(self) -> None:
        """Run the pending call now, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    def _fire(self) -> None:
        with self._lock:
            pending = self._pending
            self._pending = None
            self._timer = None
        if pending is None:
            return
        args, kwargs = pending
        self.callback(*args, **kwargs)


class ChartSession:
    """Holds the inputs of one chart and re-renders it on demand.

    Inputs are validated up front; layout state is never carried between
    passes except for the previous pass's rendered elements, which are only
    used for diffing.
    """

    def __init__(
        self,
        records: Sequence[FlowRecord],
        config: SlopeChartConfig,
        *,
        resize_delay: float = DEFAULT_RESIZE_DELAY,
        on_render: Optional[Callable[[RenderDiff], None]] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        if not isinstance(config, SlopeChartConfig):
            raise ChartConfigError("config must be a SlopeChartConfig")
        if isinstance(records, (str, bytes)) or not isinstance(records, abc.Sequence):
            raise ChartConfigError("records must be a sequence of FlowRecord")
        bad = [r for r in records if not isinstance(r, FlowRecord)]
        if bad:
            raise ChartConfigError(f"records must be FlowRecord instances, got {type(bad[0]).__name__}")

        self.records = tuple(records)
        self.config = config
        self.on_render = on_render
        self.layout: Optional[FlowLayout] = None
        self.context: Optional[Dict[str, object]] = None
        self._elements: Dict[str, str] = {}
        self._detached = False
        self._render_lock = threading.RLock()
        self._resize = Debouncer(resize_delay, self._resize_now, timer_factory=timer_factory)

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def elements(self) -> Dict[str, str]:
        return dict(self._elements)

    def render(self) -> RenderDiff:
        """Full layout pass, then diff against the previous pass.

        Passes are serialized: a resize firing on the timer thread waits
        for a pass running on the caller's thread, and vice versa.
        """
        with self._render_lock:
            self.layout = compute_layout(self.records)
            self.context = build_context(self.layout, self.config)
            elements = render_elements(self.context)
            diff = diff_elements(self._elements, elements)
            self._elements = elements
            logger.debug(
                "Render pass at %gx%g: %d added, %d removed, %d changed",
                self.config.width,
                self.config.height,
                len(diff.added),
                len(diff.removed),
                len(diff.changed),
            )
            if self.on_render is not None:
                self.on_render(diff)
            return diff

    def update_records(self, records: Sequence[FlowRecord]) -> RenderDiff:
        with self._render_lock:
            self.records = tuple(records)
            return self.render()

    def resize(self, width: float, height: float) -> None:
        """Request a re-render at a new size; rapid requests collapse into one."""
        self._resize(width, height)

    def flush(self) -> None:
        self._resize.flush()

    def detach(self) -> None:
        """Stop rendering; later resize passes are skipped."""
        self._detached = True
        self._resize.cancel()

    def _resize_now(self, width: float, height: float) -> None:
        with self._render_lock:
            if self._detached:
                logger.warning("Skipping resize to %gx%g: chart is detached", width, height)
                return
            try:
                config = self.config.resized(width, height)
            except ChartConfigError as exc:
                logger.warning("Skipping resize to %gx%g: %s", width, height, exc)
                return
            self.config = config
            self.render()
