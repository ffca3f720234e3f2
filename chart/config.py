from __future__ import annotations

from dataclasses import dataclass, field, replace


class ChartConfigError(ValueError):
    """Raised eagerly when a chart is configured with unusable values."""


@dataclass(frozen=True)
class Margin:
    top: float = 20
    right: float = 20
    bottom: float = 20
    left: float = 20


@dataclass(frozen=True)
class SlopeChartConfig:
    """Immutable presentation settings for one slope chart.

    The layout itself never reads these; they only size and label the
    geometry derived from it.
    """

    width: float = 650
    height: float = 650
    margin: Margin = field(default_factory=Margin)

    label: str = "Label not set"
    left_label: str = "Label not set"
    right_label: str = "Label not set"
    left_title: str = "Outbound"
    right_title: str = "Inbound"

    increase_color: str = "#77C"
    decrease_color: str = "#C77"

    # Bars are inner_width / bar_divisions wide
    bar_divisions: int = 22
    min_label_height: float = 3.3
    min_hover_font_size: float = 16
    min_opacity: float = 0.2

    def __post_init__(self) -> None:
        if not isinstance(self.margin, Margin):
            raise ChartConfigError("margin must be a Margin instance")
        if self.width <= 0 or self.height <= 0:
            raise ChartConfigError(
                f"Chart size must be positive, got {self.width}x{self.height}"
            )
        margins = (self.margin.top, self.margin.right, self.margin.bottom, self.margin.left)
        if any(value < 0 for value in margins):
            raise ChartConfigError(f"Margins must not be negative: {self.margin}")
        if self.inner_width <= 0 or self.inner_height <= 0:
            raise ChartConfigError(
                f"Margins {self.margin} leave no drawing area in a "
                f"{self.width}x{self.height} chart"
            )
        if self.bar_divisions < 3:
            raise ChartConfigError("bar_divisions must be at least 3")
        if not 0 <= self.min_opacity <= 1:
            raise ChartConfigError("min_opacity must be within [0, 1]")

    @property
    def inner_width(self) -> float:
        return self.width - self.margin.left - self.margin.right

    @property
    def inner_height(self) -> float:
        return self.height - self.margin.top - self.margin.bottom

    def resized(self, width: float, height: float) -> "SlopeChartConfig":
        """Return a validated copy with a new outer size."""
        return replace(self, width=width, height=height)


MIGRATION_CHART = SlopeChartConfig(
    width=900,
    height=900,
    margin=Margin(top=55, right=200, bottom=5, left=200),
    label="State to state migration",
)
