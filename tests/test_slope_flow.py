"""Tests for category aggregation, flow segments and cross-linking."""

import math

import pytest

import analysis.slope_flow as slope_flow
from analysis.slope_flow import (
    DESTINATION,
    ORIGIN,
    CategoryTotal,
    FlowRecord,
    FlowSegment,
    LayoutIntegrityError,
    aggregate,
    build_index,
    by_destination,
    by_origin,
    compute_layout,
    layout_flows,
    _check_cross_links,
)


def _segments_for(segments, key):
    return [segment for (category, _), segment in segments.items() if category == key]


class TestAggregate:
    def test_scenario_a_columns(self, scenario_records):
        assert aggregate(scenario_records, by_origin) == [
            CategoryTotal("A", 15, 0),
            CategoryTotal("B", 3, 15),
        ]
        assert aggregate(scenario_records, by_destination) == [
            CategoryTotal("X", 13, 0),
            CategoryTotal("Y", 5, 13),
        ]

    def test_empty_records(self):
        assert aggregate([], by_origin) == []

    def test_ties_keep_first_seen_order(self):
        records = [
            FlowRecord("B", "X", 5),
            FlowRecord("A", "Y", 5),
            FlowRecord("C", "X", 7),
        ]
        assert [c.key for c in aggregate(records, by_origin)] == ["C", "B", "A"]

    def test_empty_key_is_a_category(self):
        records = [FlowRecord("", "X", 4), FlowRecord("A", "X", 1)]
        categories = aggregate(records, by_origin)
        assert categories[0] == CategoryTotal("", 4, 0)
        assert categories[1].offset_before == 4

    def test_last_category_ends_at_grand_total(self, migration_records):
        categories = aggregate(migration_records, by_destination)
        assert categories[-1].offset_after == sum(r.magnitude for r in migration_records)


class TestComputeLayout:
    def test_scenario_a_segments(self, scenario_records):
        layout = compute_layout(scenario_records)

        assert list(layout.origin_segments.values()) == [
            FlowSegment("A", "X", 0, 10, 2),
            FlowSegment("A", "Y", 10, 5, 1),
            FlowSegment("B", "X", 15, 3, 1),
        ]
        assert list(layout.destination_segments.values()) == [
            FlowSegment("A", "X", 0, 10, 2),
            FlowSegment("B", "X", 10, 3, 1),
            FlowSegment("A", "Y", 13, 5, 1),
        ]
        assert layout.grand_total == 18

    def test_scenario_b_duplicate_pair_is_merged(self):
        layout = compute_layout([FlowRecord("A", "X", 4), FlowRecord("A", "X", 6)])

        assert len(layout.origin_segments) == 1
        assert len(layout.destination_segments) == 1
        assert layout.origin_segments[("A", "X")].length == 10
        assert layout.destination_segments[("X", "A")].length == 10

    def test_scenario_c_empty_input(self):
        layout = compute_layout([])

        assert layout.origin_categories == []
        assert layout.destination_categories == []
        assert layout.links() == []
        assert layout.grand_total == 0
        assert layout.scale_max == 0

    def test_scenario_d_single_flow_spans_full_bars(self):
        layout = compute_layout([FlowRecord("A", "X", 7, 1)])

        (origin,) = layout.origin_segments.values()
        (destination,) = layout.destination_segments.values()
        assert (origin.offset, origin.length) == (0, 7)
        assert (destination.offset, destination.length) == (0, 7)
        assert len(layout.links()) == 1

    def test_columns_conserve_flow(self, migration_records):
        layout = compute_layout(migration_records)
        origin_sum = sum(c.total for c in layout.origin_categories)
        destination_sum = sum(c.total for c in layout.destination_categories)
        assert origin_sum == destination_sum == 125

    @pytest.mark.parametrize("side", [ORIGIN, DESTINATION])
    def test_segments_tile_each_bar(self, migration_records, side):
        layout = compute_layout(migration_records)
        if side == ORIGIN:
            categories, segments = layout.origin_categories, layout.origin_segments
        else:
            categories, segments = layout.destination_categories, layout.destination_segments

        for category in categories:
            cursor = category.offset_before
            for segment in _segments_for(segments, category.key):
                assert segment.offset == cursor
                cursor = segment.end
            assert cursor == category.offset_after

    def test_every_origin_segment_has_one_equal_destination_segment(self, migration_records):
        layout = compute_layout(migration_records)
        for (origin, destination), segment in layout.origin_segments.items():
            matches = [
                s for key, s in layout.destination_segments.items() if key == (destination, origin)
            ]
            assert len(matches) == 1
            assert matches[0].length == segment.length
        assert len(layout.origin_segments) == len(layout.destination_segments)

    def test_segments_ordered_by_length_then_counterpart(self):
        records = [
            FlowRecord("A", "Z", 2),
            FlowRecord("A", "Y", 5),
            FlowRecord("A", "X", 5),
            FlowRecord("A", "W", 9),
        ]
        layout = compute_layout(records)
        assert [d for (_, d) in layout.origin_segments] == ["W", "X", "Y", "Z"]

    def test_layout_is_deterministic(self, migration_records):
        first = compute_layout(migration_records)
        second = compute_layout(list(migration_records))

        assert first == second
        assert list(first.origin_segments) == list(second.origin_segments)
        assert list(first.destination_segments) == list(second.destination_segments)

    def test_merged_errors_combine_as_root_sum_of_squares(self, migration_records):
        layout = compute_layout(migration_records)
        merged = layout.origin_segments[("Texas", "California")]
        assert merged.length == 45
        assert merged.error == pytest.approx(math.sqrt(6 ** 2 + 8 ** 2))

    def test_zero_flow_keeps_a_zero_length_segment(self, migration_records):
        layout = compute_layout(migration_records)
        segment = layout.origin_segments[("California", "New York")]
        assert segment.length == 0
        assert segment.offset == layout.category(ORIGIN, "California").offset_after

    def test_net_change(self, migration_records):
        layout = compute_layout(migration_records)
        assert layout.net_change("California") == 70 - 30
        assert layout.net_change("Texas") == 40 - 60
        assert layout.net_change("Nowhere") == 0


class TestLayoutIntegrity:
    def test_missing_destination_category_fails_loudly(self):
        records = [FlowRecord("A", "X", 10), FlowRecord("A", "Y", 5)]
        origin_categories = aggregate(records, by_origin)
        destination_categories = aggregate(records[:1], by_destination)

        with pytest.raises(LayoutIntegrityError, match="no destination segment"):
            layout_flows(records, origin_categories, destination_categories)

    def test_bar_not_tiled_by_segments(self):
        records = [FlowRecord("A", "X", 10)]
        origin_categories = aggregate([FlowRecord("A", "X", 3)], by_origin)
        destination_categories = aggregate(records, by_destination)

        with pytest.raises(LayoutIntegrityError, match="segments end at"):
            layout_flows(records, origin_categories, destination_categories)

    def test_unknown_side_rejected(self, scenario_records):
        layout = compute_layout(scenario_records)
        with pytest.raises(ValueError, match="Unknown column side"):
            layout.category("middle", "A")

    def test_cross_link_length_mismatch(self):
        origin_segments = {("A", "X"): FlowSegment("A", "X", 0, 10, 0)}
        destination_segments = {("X", "A"): FlowSegment("A", "X", 0, 9, 0)}

        with pytest.raises(LayoutIntegrityError, match="length mismatch: 10 \\(origin\\) != 9"):
            _check_cross_links(origin_segments, destination_segments)

    def test_destination_segment_without_origin_segment(self):
        origin_segments = {("A", "X"): FlowSegment("A", "X", 0, 10, 0)}
        destination_segments = {
            ("X", "A"): FlowSegment("A", "X", 0, 10, 0),
            ("X", "B"): FlowSegment("B", "X", 10, 2, 0),
        }

        with pytest.raises(LayoutIntegrityError, match="'B' -> 'X' has no origin segment"):
            _check_cross_links(origin_segments, destination_segments)

    def test_matching_segments_pass(self):
        segment = FlowSegment("A", "X", 0, 10, 0)
        _check_cross_links({("A", "X"): segment}, {("X", "A"): segment})

    def test_column_totals_must_agree(self, monkeypatch, scenario_records):
        real_aggregate = slope_flow.aggregate

        def lossy_aggregate(records, key_fn):
            categories = real_aggregate(records, key_fn)
            if key_fn is by_destination:
                return categories[:-1]
            return categories

        monkeypatch.setattr(slope_flow, "aggregate", lossy_aggregate)
        with pytest.raises(LayoutIntegrityError, match="Column totals differ: origin 18 != destination 13"):
            compute_layout(scenario_records)


class TestFlowIndex:
    def test_touching_origin_category(self, scenario_records):
        index = build_index(compute_layout(scenario_records))

        links = index.touching(ORIGIN, "A")
        assert [(l.origin, l.destination) for l in links] == [("A", "X"), ("A", "Y")]

    def test_touching_destination_follows_destination_bar_order(self, scenario_records):
        index = build_index(compute_layout(scenario_records))

        links = index.touching(DESTINATION, "X")
        assert [l.origin for l in links] == ["A", "B"]
        assert [l.destination_segment.offset for l in links] == [0, 10]

    def test_unknown_category_and_pair(self, scenario_records):
        index = build_index(compute_layout(scenario_records))

        assert index.touching(ORIGIN, "Z") == ()
        assert index.pair("B", "Y") is None
        assert index.pair("B", "X").length == 3

    def test_unknown_side(self, scenario_records):
        index = build_index(compute_layout(scenario_records))
        with pytest.raises(ValueError):
            index.touching("left", "A")
