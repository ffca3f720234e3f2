#!/usr/bin/env python3
"""Static SVG slope chart for category-to-category flows.

Consumes flow records (e.g. a state-to-state migration table), lays them out
with `analysis.slope_flow.compute_layout` and renders two stacked bar
columns joined by one polygon per (origin, destination) pair:

    Outbound (origin) bars → flow polygons → Inbound (destination) bars

Polygon height is proportional to the flow magnitude on both sides.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
from dataclasses import dataclass, field
from html import escape
from pathlib import Path
from typing import Dict, List, Optional

from analysis.geometry import ChartFrame, derive_frame, link_polygons
from analysis.slope_flow import (
    DESTINATION,
    ORIGIN,
    CategoryTotal,
    FlowIndex,
    FlowLayout,
    FlowLink,
    compute_layout,
)
from chart.config import MIGRATION_CHART, SlopeChartConfig
from layout_writer import layout_to_json, write_layout
from migration_loader import load_records

logger = logging.getLogger(__name__)

_SIDE_CLASS = {ORIGIN: "from", DESTINATION: "to"}


@dataclass
class RenderDiff:
    """Element ids that changed between two render passes."""

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def main() -> None:
    """CLI entry point to render a slope chart from a migration table."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("data", help="Migration table CSV (Previous, Current, Estimate, Error)")
    parser.add_argument("--output", help="Where to write the SVG")
    parser.add_argument("--out-json", help="Optional layout JSON output path")
    parser.add_argument("--out-parquet", help="Optional directory for categories/segments Parquet files")
    parser.add_argument("--width", type=float, default=MIGRATION_CHART.width, help="Chart width in pixels")
    parser.add_argument("--height", type=float, default=MIGRATION_CHART.height, help="Chart height in pixels")
    parser.add_argument("--title", help="Optional chart title override")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        records = load_records(Path(args.data))
    except FileNotFoundError as exc:
        raise SystemExit(str(exc)) from exc

    config = MIGRATION_CHART.resized(args.width, args.height)
    layout = compute_layout(records)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(render_svg(layout, config, title=args.title), encoding="utf-8")
        print(f"Wrote {output_path}")
    if args.out_json:
        json_path = Path(args.out_json)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(layout_to_json(layout), indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Wrote {json_path}")
    if args.out_parquet:
        for path in write_layout(layout, Path(args.out_parquet)).values():
            print(f"Wrote {path}")
    if not (args.output or args.out_json or args.out_parquet):
        print(json.dumps(layout_to_json(layout), indent=2, ensure_ascii=False))


def render_svg(layout: FlowLayout, config: SlopeChartConfig, title: Optional[str] = None) -> str:
    """Render a layout into a standalone SVG document string."""
    context = build_context(layout, config)
    if title:
        context["title"] = title
    svg_lines: List[str] = []
    add = svg_lines.append
    add('<?xml version="1.0" encoding="UTF-8" standalone="no"?>')
    add(
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{config.width:g}" height="{config.height:g}" '
        f'viewBox="0 0 {config.width:g} {config.height:g}">'
    )
    add(f"<title>{escape(str(context['title']))}</title>")
    add(_svg_style())
    add('<g class="slope-chart">')
    for markup in render_elements(context).values():
        add(markup)
    add("</g>")
    add("</svg>")
    return "".join(f"{line}\n" for line in svg_lines).rstrip("\n")


def build_context(layout: FlowLayout, config: SlopeChartConfig) -> Dict[str, object]:
    """Build a draw-ready context (frame, titles, bars, polygons).

    Separates geometry from SVG text so the interactive server and the
    resize session can reuse it.
    """
    frame = derive_frame(config, layout.scale_max)
    bars = [
        _bar_entry(category, ORIGIN, layout, frame, config)
        for category in layout.origin_categories
    ] + [
        _bar_entry(category, DESTINATION, layout, frame, config)
        for category in layout.destination_categories
    ]
    polygons = [
        {
            "id": polygon_id(link),
            "origin": link.origin,
            "destination": link.destination,
            "length": link.length,
            "error": link.error,
            "classes": [
                "stateMigrationLine",
                f"line-from-{css_token(link.origin)}",
                f"line-to-{css_token(link.destination)}",
            ],
            "points": [[x, y] for x, y in points],
        }
        for link, points in link_polygons(layout, frame)
    ]
    titles = [
        {"id": "title-left", "text": config.left_title, "x": 0.0},
        {"id": "title-right", "text": config.right_title, "x": frame.destination_bar_x + frame.bar_width / 2},
    ]
    return {
        "frame": frame,
        "title": config.label,
        "titles": titles,
        "bars": bars,
        "polygons": polygons,
    }


def render_elements(context: Dict[str, object]) -> Dict[str, str]:
    """Markup per element id, in paint order (titles, bars, polygons)."""
    elements: Dict[str, str] = {}
    for title in context["titles"]:
        elements[title["id"]] = (
            f'<text id="{title["id"]}" class="column-title" x="{title["x"]:.2f}" y="1em">'
            f"{escape(title['text'])}</text>"
        )
    for bar in context["bars"]:
        elements[bar["id"]] = _render_bar(bar)
    for polygon in context["polygons"]:
        elements[polygon["id"]] = _render_polygon(polygon)
    return elements


def diff_elements(previous: Dict[str, str], current: Dict[str, str]) -> RenderDiff:
    """Compare two `render_elements` results by element id."""
    diff = RenderDiff()
    for element_id, markup in current.items():
        if element_id not in previous:
            diff.added.append(element_id)
        elif previous[element_id] != markup:
            diff.changed.append(element_id)
    diff.removed = [element_id for element_id in previous if element_id not in current]
    return diff


def build_highlight(index: FlowIndex, frame: ChartFrame, side: str, key: str) -> Dict[str, object]:
    """Polygons to emphasise and counterpart-bar slices for a hovered category.

    Hovering an origin bar marks the matching slices of the destination bars
    and vice versa.
    """
    links = index.touching(side, key)
    slices = []
    for link in links:
        if side == ORIGIN:
            segment = link.destination_segment
            x = frame.destination_bar_x
            css_class = "to-slice"
        else:
            segment = link.origin_segment
            x = frame.origin_bar_x
            css_class = "from-slice"
        slices.append(
            {
                "class": css_class,
                "x": x,
                "y": frame.y(segment.offset),
                "width": frame.bar_width,
                "height": frame.height_scale(segment.length),
            }
        )
    suffix = _SIDE_CLASS[side]
    return {
        "side": side,
        "category": key,
        "chartClasses": ["filtered", f"filtered-{suffix}"],
        "lineClass": f"line-hover-{suffix}",
        "polygons": [polygon_id(link) for link in links],
        "slices": slices,
    }


def css_token(key: str) -> str:
    """Category key -> readable CSS class token. Distinct keys may share a token."""
    return re.sub(r"[^A-Za-z0-9_-]+", "-", key)


def element_token(key: str) -> str:
    """Category key -> unique id token.

    ASCII letters and digits pass through; every other UTF-8 byte becomes
    `_xx` (lowercase hex), so the token never contains `-` and distinct keys
    never share a token.
    """
    return "".join(
        ch if ch.isascii() and ch.isalnum() else "".join(f"_{byte:02x}" for byte in ch.encode("utf-8"))
        for ch in key
    )


def polygon_id(link: FlowLink) -> str:
    return f"flow-{element_token(link.origin)}--{element_token(link.destination)}"


def bar_id(side: str, key: str) -> str:
    return f"bar-{side}-{element_token(key)}"


def _bar_entry(
    category: CategoryTotal,
    side: str,
    layout: FlowLayout,
    frame: ChartFrame,
    config: SlopeChartConfig,
) -> Dict[str, object]:
    height = frame.height_scale(category.total)
    y = frame.y(category.offset_before)
    if side == ORIGIN:
        bar_x = frame.origin_bar_x
        label_x = 0.0
        label_width = config.margin.left
        text_x = 0.0
    else:
        bar_x = frame.destination_bar_x
        label_x = config.width - config.margin.right
        label_width = config.margin.right
        text_x = frame.column_right_x
    net = layout.net_change(category.key)
    if net > 0:
        label_fill = config.increase_color
    elif net < 0:
        label_fill = config.decrease_color
    else:
        label_fill = "none"
    return {
        "id": bar_id(side, category.key),
        "side": side,
        "key": category.key,
        "total": category.total,
        "x": bar_x,
        "y": y,
        "width": frame.bar_width,
        "height": height,
        "opacity": frame.opacity(category.offset_before),
        "label_rect": {"x": label_x, "y": y, "width": label_width, "height": height, "fill": label_fill},
        "text_x": text_x,
        "font_size": height / 1.5,
        "hover_font_size": max(config.min_hover_font_size, height / 1.5),
        "label_visible": height > config.min_label_height,
    }


def _render_bar(bar: Dict[str, object]) -> str:
    suffix = _SIDE_CLASS[bar["side"]]
    key = escape(bar["key"])
    rect = bar["label_rect"]
    dy = bar["height"] / 1.5
    parts = [
        f'<g id="{bar["id"]}" class="state-{suffix}-group" data-key="{key}">',
        f'<rect class="label label-{suffix}" x="{rect["x"]:.2f}" y="{rect["y"]:.2f}" '
        f'width="{rect["width"]:.2f}" height="{rect["height"]:.2f}" fill="{rect["fill"]}"/>',
    ]
    if bar["label_visible"]:
        parts.append(
            f'<text class="state-{suffix}-text" x="{bar["text_x"]:.2f}" y="{bar["y"]:.2f}" '
            f'dy="{dy:.2f}" font-size="{bar["font_size"]:.2f}">{key}</text>'
        )
    parts.append(
        f'<text class="state-{suffix}-text-hover" x="{bar["text_x"]:.2f}" y="{bar["y"]:.2f}" '
        f'dy="{dy:.2f}" font-size="{bar["hover_font_size"]:.2f}">{key}</text>'
    )
    parts.append(
        f'<rect class="state-bar state-{suffix}" x="{bar["x"]:.2f}" y="{bar["y"]:.2f}" '
        f'width="{bar["width"]:.2f}" height="{bar["height"]:.2f}" opacity="{bar["opacity"]:.3f}"/>'
    )
    parts.append("</g>")
    return "".join(parts)


def _render_polygon(polygon: Dict[str, object]) -> str:
    points = " ".join(f"{x:.2f},{y:.2f}" for x, y in polygon["points"])
    tooltip = f"{polygon['origin']} → {polygon['destination']}: {_format_quantity(polygon['length'])}"
    if polygon["error"]:
        tooltip += f" ± {_format_quantity(polygon['error'])}"
    return (
        f'<polygon id="{polygon["id"]}" class="{" ".join(polygon["classes"])}" points="{points}">'
        f"<title>{escape(tooltip)}</title></polygon>"
    )


def _format_quantity(value: float) -> str:
    return f"{value:,.0f}"


def _svg_style() -> str:
    return """<style>
    .column-title { font: 600 14px system-ui, -apple-system, Segoe UI, Roboto; fill:#333; }
    .state-bar { fill:#4a5568; }
    .label { opacity:0.15; }
    .state-from-text, .state-to-text { font-family: system-ui, -apple-system, Segoe UI, Roboto; fill:#222; }
    .state-from-text-hover, .state-to-text-hover { display:none; font-family: system-ui; fill:#000; }
    .state-from-group:hover .state-from-text-hover, .state-to-group:hover .state-to-text-hover { display:inline; }
    .stateMigrationLine { fill:#8894a8; opacity:0.35; stroke:none; }
    .stateMigrationLine:hover { opacity:0.8; }
</style>"""


if __name__ == "__main__":
    main()
