from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

import polars as pl

from analysis.slope_flow import FlowRecord

logger = logging.getLogger(__name__)

NA_SENTINEL = "N/A"


@dataclass(frozen=True)
class RecordColumns:
    """Source column names for the four record fields."""

    origin: str = "Previous"
    destination: str = "Current"
    magnitude: str = "Estimate"
    error: str = "Error"


DEFAULT_COLUMNS = RecordColumns()


def load_records(path: Path, columns: RecordColumns = DEFAULT_COLUMNS) -> List[FlowRecord]:
    """Read a migration table CSV into flow records.

    Every column is read as text first so that the "N/A" sentinel, blanks and
    thousands separators can be normalised before casting.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"migration table not found: {path}")
    frame = pl.read_csv(path, infer_schema_length=0)
    records = records_from_frame(frame, columns)
    logger.info("Loaded %d flow records from %s", len(records), path)
    return records


def records_from_frame(frame: pl.DataFrame, columns: RecordColumns = DEFAULT_COLUMNS) -> List[FlowRecord]:
    required = [columns.origin, columns.destination, columns.magnitude, columns.error]
    missing = [name for name in required if name not in frame.columns]
    if missing:
        raise ValueError(f"missing required columns: {', '.join(missing)}")

    normalised = frame.select(
        _key(columns.origin).alias("origin"),
        _key(columns.destination).alias("destination"),
        _numeric(columns.magnitude).alias("magnitude"),
        _numeric(columns.error).alias("error"),
    )
    return [
        FlowRecord(
            origin=row["origin"],
            destination=row["destination"],
            magnitude=row["magnitude"],
            error=row["error"],
        )
        for row in normalised.iter_rows(named=True)
    ]


def _key(column: str) -> pl.Expr:
    return pl.col(column).cast(pl.Utf8).fill_null("")


def _numeric(column: str) -> pl.Expr:
    """Text column -> finite non-negative float, with sentinels and junk mapped to 0."""
    text = pl.col(column).cast(pl.Utf8).str.strip_chars().str.replace_all(",", "")
    value = (
        pl.when(text == NA_SENTINEL)
        .then(None)
        .otherwise(text)
        .cast(pl.Float64, strict=False)
        .fill_nan(None)
        .fill_null(0.0)
    )
    return pl.when(value.is_infinite() | (value < 0)).then(0.0).otherwise(value)
