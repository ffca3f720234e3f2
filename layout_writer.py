from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import polars as pl

from analysis.slope_flow import DESTINATION, ORIGIN, FlowLayout

CATEGORY_SCHEMA = {
    "side": pl.Utf8,
    "rank": pl.Int64,
    "key": pl.Utf8,
    "total": pl.Float64,
    "offset_before": pl.Float64,
}

SEGMENT_SCHEMA = {
    "side": pl.Utf8,
    "origin": pl.Utf8,
    "destination": pl.Utf8,
    "offset": pl.Float64,
    "length": pl.Float64,
    "error": pl.Float64,
}


def categories_frame(layout: FlowLayout) -> pl.DataFrame:
    rows = []
    for side, categories in ((ORIGIN, layout.origin_categories), (DESTINATION, layout.destination_categories)):
        for rank, category in enumerate(categories):
            rows.append(
                {
                    "side": side,
                    "rank": rank,
                    "key": category.key,
                    "total": float(category.total),
                    "offset_before": float(category.offset_before),
                }
            )
    return pl.DataFrame(rows, schema=CATEGORY_SCHEMA)


def segments_frame(layout: FlowLayout) -> pl.DataFrame:
    rows = []
    for side, segments in ((ORIGIN, layout.origin_segments), (DESTINATION, layout.destination_segments)):
        for segment in segments.values():
            rows.append(
                {
                    "side": side,
                    "origin": segment.origin,
                    "destination": segment.destination,
                    "offset": float(segment.offset),
                    "length": float(segment.length),
                    "error": float(segment.error),
                }
            )
    return pl.DataFrame(rows, schema=SEGMENT_SCHEMA)


def write_layout(layout: FlowLayout, out_dir: Path) -> Dict[str, Path]:
    """Write `categories.parquet` and `segments.parquet` into `out_dir`."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "categories": out_dir / "categories.parquet",
        "segments": out_dir / "segments.parquet",
    }
    categories_frame(layout).write_parquet(paths["categories"])
    segments_frame(layout).write_parquet(paths["segments"])
    return paths


def layout_to_json(layout: FlowLayout) -> Dict[str, Any]:
    return {
        "grandTotal": layout.grand_total,
        "origin": [
            {"key": c.key, "total": c.total, "offsetBefore": c.offset_before}
            for c in layout.origin_categories
        ],
        "destination": [
            {"key": c.key, "total": c.total, "offsetBefore": c.offset_before}
            for c in layout.destination_categories
        ],
        "links": [
            {
                "id": link.link_id,
                "origin": link.origin,
                "destination": link.destination,
                "length": link.length,
                "error": link.error,
                "originOffset": link.origin_segment.offset,
                "destinationOffset": link.destination_segment.offset,
            }
            for link in layout.links()
        ],
    }
