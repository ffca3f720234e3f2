"""Tests for tabular export of a layout pass."""

import polars as pl

from analysis.slope_flow import compute_layout
from layout_writer import categories_frame, layout_to_json, segments_frame, write_layout


class TestFrames:
    def test_categories_frame(self, scenario_records):
        frame = categories_frame(compute_layout(scenario_records))

        assert frame.columns == ["side", "rank", "key", "total", "offset_before"]
        assert frame.filter(pl.col("side") == "origin")["key"].to_list() == ["A", "B"]
        assert frame.filter(pl.col("side") == "destination")["offset_before"].to_list() == [0.0, 13.0]

    def test_segments_frame(self, scenario_records):
        frame = segments_frame(compute_layout(scenario_records))

        assert frame.height == 6
        destination = frame.filter(pl.col("side") == "destination")
        assert destination["origin"].to_list() == ["A", "B", "A"]
        assert destination["offset"].to_list() == [0.0, 10.0, 13.0]

    def test_empty_layout_keeps_schema(self):
        frame = segments_frame(compute_layout([]))
        assert frame.height == 0
        assert frame.schema["length"] == pl.Float64


class TestWriteLayout:
    def test_writes_parquet_files(self, tmp_path, migration_records):
        layout = compute_layout(migration_records)
        paths = write_layout(layout, tmp_path / "out")

        categories = pl.read_parquet(paths["categories"])
        segments = pl.read_parquet(paths["segments"])
        assert categories.height == 6
        assert segments.height == 2 * len(layout.origin_segments)


class TestLayoutToJson:
    def test_payload(self, scenario_records):
        payload = layout_to_json(compute_layout(scenario_records))

        assert payload["grandTotal"] == 18
        assert payload["origin"][1] == {"key": "B", "total": 3, "offsetBefore": 15}
        assert [link["id"] for link in payload["links"]] == ["A->X", "A->Y", "B->X"]
        assert payload["links"][2]["destinationOffset"] == 10
