"""Pixel geometry for a slope chart layout.

Maps stack offsets to screen coordinates with linear scales shared by both
columns, so equal magnitudes cover equal heights on either side.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from analysis.slope_flow import FlowLayout, FlowLink, FlowSegment, LayoutIntegrityError
from chart.config import SlopeChartConfig

__all__ = [
    "Point",
    "Polygon",
    "LinearScale",
    "ChartFrame",
    "derive_frame",
    "to_polygon",
    "link_polygon",
    "link_polygons",
]

Point = Tuple[float, float]
Polygon = Tuple[Point, Point, Point, Point]


@dataclass(frozen=True)
class LinearScale:
    """Affine map from `domain` onto `range`.

    A degenerate domain (both ends equal) maps every value to the start of
    the range.
    """

    domain: Tuple[float, float]
    range: Tuple[float, float]

    def __call__(self, value: float) -> float:
        d0, d1 = self.domain
        r0, r1 = self.range
        if d1 == d0:
            return r0
        return r0 + (value - d0) * (r1 - r0) / (d1 - d0)


@dataclass(frozen=True)
class ChartFrame:
    """Derived drawing area and scales for one layout pass."""

    width: float
    height: float
    inner_width: float
    inner_height: float
    bar_width: float
    column_left_x: float
    column_right_x: float
    y: LinearScale
    height_scale: LinearScale
    opacity: LinearScale

    @property
    def origin_bar_x(self) -> float:
        return self.column_left_x

    @property
    def destination_bar_x(self) -> float:
        return self.column_right_x - self.bar_width


def derive_frame(config: SlopeChartConfig, scale_max: float) -> ChartFrame:
    """Size the chart for a layout whose tallest column reaches `scale_max`."""
    margin = config.margin
    top = margin.top
    return ChartFrame(
        width=config.width,
        height=config.height,
        inner_width=config.inner_width,
        inner_height=config.inner_height,
        bar_width=config.inner_width / config.bar_divisions,
        column_left_x=margin.left,
        column_right_x=margin.left + config.inner_width,
        y=LinearScale((0, scale_max), (top, top + config.inner_height)),
        height_scale=LinearScale((0, scale_max), (0, config.inner_height)),
        opacity=LinearScale((0, scale_max), (1, config.min_opacity)),
    )


def to_polygon(
    origin_segment: FlowSegment,
    destination_segment: FlowSegment,
    bar_width: float,
    column_left_x: float,
    column_right_x: float,
    y_scale: LinearScale,
) -> Polygon:
    """Quadrilateral joining an origin segment to its destination segment.

    Points run near-top, near-bottom (origin bar inner edge), far-bottom,
    far-top (destination bar inner edge).
    """
    pair = (origin_segment.origin, origin_segment.destination)
    if pair != (destination_segment.origin, destination_segment.destination):
        raise LayoutIntegrityError(
            f"Cannot join segment {pair} to segment "
            f"{(destination_segment.origin, destination_segment.destination)}"
        )
    if origin_segment.length != destination_segment.length:
        raise LayoutIntegrityError(
            f"Segments for {pair} differ in length: "
            f"{origin_segment.length} != {destination_segment.length}"
        )

    near_x = column_left_x + bar_width
    far_x = column_right_x - bar_width
    return (
        (near_x, y_scale(origin_segment.offset)),
        (near_x, y_scale(origin_segment.end)),
        (far_x, y_scale(destination_segment.end)),
        (far_x, y_scale(destination_segment.offset)),
    )


def link_polygon(link: FlowLink, frame: ChartFrame) -> Polygon:
    return to_polygon(
        link.origin_segment,
        link.destination_segment,
        frame.bar_width,
        frame.column_left_x,
        frame.column_right_x,
        frame.y,
    )


def link_polygons(layout: FlowLayout, frame: ChartFrame) -> List[Tuple[FlowLink, Polygon]]:
    return [(link, link_polygon(link, frame)) for link in layout.links()]
