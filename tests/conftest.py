"""Shared fixtures for slope chart tests."""

import pytest

from analysis.slope_flow import FlowRecord
from chart.config import Margin, SlopeChartConfig


@pytest.fixture()
def scenario_records():
    """Three flows: A->X 10, A->Y 5, B->X 3."""
    return [
        FlowRecord("A", "X", 10, 2),
        FlowRecord("A", "Y", 5, 1),
        FlowRecord("B", "X", 3, 1),
    ]


@pytest.fixture()
def migration_records():
    """Small state-to-state table with a duplicate pair and a zero flow."""
    return [
        FlowRecord("Texas", "California", 40, 6),
        FlowRecord("New York", "California", 25, 5),
        FlowRecord("Texas", "New York", 15, 3),
        FlowRecord("California", "Texas", 30, 4),
        FlowRecord("New York", "Texas", 10, 2),
        FlowRecord("Texas", "California", 5, 8),
        FlowRecord("California", "New York", 0, 0),
    ]


@pytest.fixture()
def config():
    return SlopeChartConfig(width=650, height=650, margin=Margin(20, 20, 20, 20), label="Test chart")


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled:
            self.function()


@pytest.fixture()
def fake_timers():
    """Timer factory plus the list of timers it has created."""
    created = []

    def factory(interval, function):
        timer = FakeTimer(interval, function)
        created.append(timer)
        return timer

    return factory, created
