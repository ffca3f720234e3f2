"""Stacked-bar and flow layout for category-to-category slope charts.

Given flow records (origin category, destination category, magnitude,
error) this module builds:

- Two ranked columns of category totals (origin and destination), each with
  the stack position (`offset_before`) of every category
- Per-category flow segments that tile each category's bar, one per
  counterpart category
- The matched origin/destination segment pairs (`FlowLink`) and an explicit
  index from category to the links that touch it

Everything here is pure and recomputed from scratch on each layout pass.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

__all__ = [
    "ORIGIN",
    "DESTINATION",
    "FlowRecord",
    "CategoryTotal",
    "FlowSegment",
    "FlowLink",
    "FlowLayout",
    "FlowIndex",
    "LayoutIntegrityError",
    "by_origin",
    "by_destination",
    "aggregate",
    "layout_flows",
    "compute_layout",
    "build_index",
]

logger = logging.getLogger(__name__)

ORIGIN = "origin"
DESTINATION = "destination"

_TOLERANCE = 1e-9


class LayoutIntegrityError(ValueError):
    """Raised when segments, bars or column totals do not line up."""


@dataclass(frozen=True)
class FlowRecord:
    """One row of input: `magnitude` units moved from `origin` to `destination`.

    Attributes:
        origin: Category the flow leaves (e.g. previous state of residence).
        destination: Category the flow reaches.
        magnitude: Non-negative size of the flow.
        error: Error estimate for `magnitude` (margin of error).
    """

    origin: str
    destination: str
    magnitude: float
    error: float = 0


@dataclass(frozen=True)
class CategoryTotal:
    """A category's bar within one column."""

    key: str
    total: float
    offset_before: float

    @property
    def offset_after(self) -> float:
        return self.offset_before + self.total


@dataclass(frozen=True)
class FlowSegment:
    """Slice of a category bar attributable to one counterpart category.

    On the origin column `origin` is the bar's category; on the destination
    column `destination` is. `offset` is measured from the top of the column.
    """

    origin: str
    destination: str
    offset: float
    length: float
    error: float

    @property
    def end(self) -> float:
        return self.offset + self.length


@dataclass(frozen=True)
class FlowLink:
    """The origin and destination segments of one (origin, destination) pair."""

    origin_segment: FlowSegment
    destination_segment: FlowSegment

    @property
    def origin(self) -> str:
        return self.origin_segment.origin

    @property
    def destination(self) -> str:
        return self.origin_segment.destination

    @property
    def length(self) -> float:
        return self.origin_segment.length

    @property
    def error(self) -> float:
        return self.origin_segment.error

    @property
    def link_id(self) -> str:
        return f"{self.origin}->{self.destination}"


@dataclass(frozen=True)
class FlowLayout:
    """Result of one layout pass.

    `origin_segments` is keyed by (origin, destination) and
    `destination_segments` by (destination, origin). Both dicts iterate in
    column order: category rank first, then segment rank within the bar.
    """

    origin_categories: List[CategoryTotal]
    destination_categories: List[CategoryTotal]
    origin_segments: Dict[Tuple[str, str], FlowSegment]
    destination_segments: Dict[Tuple[str, str], FlowSegment]

    @property
    def grand_total(self) -> float:
        return _column_end(self.origin_categories)

    @property
    def scale_max(self) -> float:
        """Largest stack extent over both columns (0 for an empty layout)."""
        return max(
            _column_end(self.origin_categories),
            _column_end(self.destination_categories),
        )

    def links(self) -> List[FlowLink]:
        return [
            FlowLink(segment, self.destination_segments[(destination, origin)])
            for (origin, destination), segment in self.origin_segments.items()
        ]

    def category(self, side: str, key: str) -> Optional[CategoryTotal]:
        for entry in _categories_for(self, side):
            if entry.key == key:
                return entry
        return None

    def net_change(self, key: str) -> float:
        """Inbound total minus outbound total for a category key."""
        inbound = self.category(DESTINATION, key)
        outbound = self.category(ORIGIN, key)
        return (inbound.total if inbound else 0) - (outbound.total if outbound else 0)


@dataclass(frozen=True)
class FlowIndex:
    """Category key -> links touching that category, per column.

    Replaces cross-referencing rendered elements by class name: highlight
    lookups query this mapping directly.
    """

    by_origin: Dict[str, Tuple[FlowLink, ...]] = field(default_factory=dict)
    by_destination: Dict[str, Tuple[FlowLink, ...]] = field(default_factory=dict)
    by_pair: Dict[Tuple[str, str], FlowLink] = field(default_factory=dict)

    def touching(self, side: str, key: str) -> Tuple[FlowLink, ...]:
        if side == ORIGIN:
            return self.by_origin.get(key, ())
        if side == DESTINATION:
            return self.by_destination.get(key, ())
        raise ValueError(f"Unknown column side: {side!r}")

    def pair(self, origin: str, destination: str) -> Optional[FlowLink]:
        return self.by_pair.get((origin, destination))


def by_origin(record: FlowRecord) -> str:
    return record.origin


def by_destination(record: FlowRecord) -> str:
    return record.destination


def aggregate(
    records: Iterable[FlowRecord],
    key_fn: Callable[[FlowRecord], str],
) -> List[CategoryTotal]:
    """Group records by `key_fn`, rank groups by summed magnitude and stack them.

    Ties keep first-seen order. An empty key is an ordinary category.
    """
    totals: Dict[str, float] = {}
    for record in records:
        key = key_fn(record)
        totals[key] = totals.get(key, 0) + record.magnitude

    # sorted() is stable under reverse=True, so ties stay in first-seen order
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)

    categories: List[CategoryTotal] = []
    running = 0
    for key, total in ranked:
        categories.append(CategoryTotal(key=key, total=total, offset_before=running))
        running += total
    return categories


def layout_flows(
    records: Sequence[FlowRecord],
    origin_categories: Sequence[CategoryTotal],
    destination_categories: Sequence[CategoryTotal],
) -> FlowLayout:
    """Partition both columns into per-counterpart segments and cross-link them.

    Raises:
        LayoutIntegrityError: if a bar is not tiled by its segments, or an
            origin segment has no destination segment of equal length (and
            vice versa).
    """
    origin_segments = _partition_column(
        records, origin_categories, by_origin, by_destination, ORIGIN
    )
    destination_segments = _partition_column(
        records, destination_categories, by_destination, by_origin, DESTINATION
    )
    _check_cross_links(origin_segments, destination_segments)
    return FlowLayout(
        origin_categories=list(origin_categories),
        destination_categories=list(destination_categories),
        origin_segments=origin_segments,
        destination_segments=destination_segments,
    )


def compute_layout(records: Sequence[FlowRecord]) -> FlowLayout:
    """Run a full layout pass over `records`."""
    records = list(records)
    origin_categories = aggregate(records, by_origin)
    destination_categories = aggregate(records, by_destination)

    origin_total = _column_end(origin_categories)
    destination_total = _column_end(destination_categories)
    if not _close(origin_total, destination_total):
        raise LayoutIntegrityError(
            f"Column totals differ: origin {origin_total} != destination {destination_total}"
        )

    layout = layout_flows(records, origin_categories, destination_categories)
    logger.debug(
        "Layout pass: %d records, %d origin / %d destination categories, %d links",
        len(records),
        len(origin_categories),
        len(destination_categories),
        len(layout.origin_segments),
    )
    return layout


def build_index(layout: FlowLayout) -> FlowIndex:
    """Index every link by origin key, destination key and pair."""
    by_origin_key: Dict[str, List[FlowLink]] = defaultdict(list)
    by_destination_key: Dict[str, List[FlowLink]] = defaultdict(list)
    by_pair: Dict[Tuple[str, str], FlowLink] = {}
    for link in layout.links():
        by_origin_key[link.origin].append(link)
        by_destination_key[link.destination].append(link)
        by_pair[(link.origin, link.destination)] = link

    # Destination-side lists follow the destination bar's own ordering
    for key, links in by_destination_key.items():
        links.sort(key=lambda link: link.destination_segment.offset)

    return FlowIndex(
        by_origin={key: tuple(links) for key, links in by_origin_key.items()},
        by_destination={key: tuple(links) for key, links in by_destination_key.items()},
        by_pair=by_pair,
    )


def _partition_column(
    records: Sequence[FlowRecord],
    categories: Sequence[CategoryTotal],
    key_fn: Callable[[FlowRecord], str],
    counterpart_fn: Callable[[FlowRecord], str],
    side: str,
) -> Dict[Tuple[str, str], FlowSegment]:
    """Split every category bar of one column into ranked counterpart segments.

    Result keys are (category, counterpart).
    """
    grouped: Dict[str, Dict[str, List[FlowRecord]]] = defaultdict(dict)
    for record in records:
        grouped[key_fn(record)].setdefault(counterpart_fn(record), []).append(record)

    segments: Dict[Tuple[str, str], FlowSegment] = {}
    for category in categories:
        buckets = grouped.get(category.key, {})
        combined = [
            (counterpart, _sum_magnitudes(rows), _combine_errors(rows))
            for counterpart, rows in buckets.items()
        ]
        combined.sort(key=lambda item: (-item[1], item[0]))

        running = category.offset_before
        for counterpart, length, error in combined:
            if side == ORIGIN:
                origin, destination = category.key, counterpart
            else:
                origin, destination = counterpart, category.key
            segments[(category.key, counterpart)] = FlowSegment(
                origin=origin,
                destination=destination,
                offset=running,
                length=length,
                error=error,
            )
            running += length

        if not _close(running, category.offset_after):
            raise LayoutIntegrityError(
                f"{side} bar '{category.key}' spans [{category.offset_before}, "
                f"{category.offset_after}) but its segments end at {running}"
            )
    return segments


def _check_cross_links(
    origin_segments: Dict[Tuple[str, str], FlowSegment],
    destination_segments: Dict[Tuple[str, str], FlowSegment],
) -> None:
    for (origin, destination), segment in origin_segments.items():
        match = destination_segments.get((destination, origin))
        if match is None:
            raise LayoutIntegrityError(
                f"Flow {origin!r} -> {destination!r} has no destination segment"
            )
        if match.length != segment.length:
            raise LayoutIntegrityError(
                f"Flow {origin!r} -> {destination!r} length mismatch: "
                f"{segment.length} (origin) != {match.length} (destination)"
            )
    for destination, origin in destination_segments:
        if (origin, destination) not in origin_segments:
            raise LayoutIntegrityError(
                f"Flow {origin!r} -> {destination!r} has no origin segment"
            )


def _sum_magnitudes(rows: Sequence[FlowRecord]) -> float:
    total = 0
    for row in rows:
        total += row.magnitude
    return total


def _combine_errors(rows: Sequence[FlowRecord]) -> float:
    """Root-sum-of-squares of independent error estimates."""
    if len(rows) == 1:
        return rows[0].error
    return math.sqrt(sum(row.error * row.error for row in rows))


def _column_end(categories: Sequence[CategoryTotal]) -> float:
    return categories[-1].offset_after if categories else 0


def _categories_for(layout: FlowLayout, side: str) -> List[CategoryTotal]:
    if side == ORIGIN:
        return layout.origin_categories
    if side == DESTINATION:
        return layout.destination_categories
    raise ValueError(f"Unknown column side: {side!r}")


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=_TOLERANCE, abs_tol=_TOLERANCE)
