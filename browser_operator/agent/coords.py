"""Device-pixel <-> CSS-pixel conversion.

The reasoning endpoint sees screenshots in device pixels; input synthesis takes
CSS pixels. One frame is built per turn from a live viewport query.
"""

from __future__ import annotations

from dataclasses import dataclass

MIN_RATIO = 0.5


@dataclass(frozen=True)
class CoordinateFrame:
    css_width: int
    css_height: int
    device_pixel_ratio: float = 1.0

    @classmethod
    def from_viewport(cls, width: int, height: int, ratio: float) -> CoordinateFrame:
        return cls(int(width), int(height), max(MIN_RATIO, float(ratio)))

    @property
    def ratio(self) -> float:
        return max(MIN_RATIO, self.device_pixel_ratio)

    @property
    def is_valid(self) -> bool:
        return self.css_width > 0 and self.css_height > 0

    @property
    def display_width(self) -> int:
        return self.to_device(self.css_width)

    @property
    def display_height(self) -> int:
        return self.to_device(self.css_height)

    def to_device(self, value: float) -> int:
        return round(value * self.ratio)

    def to_css(self, value: float) -> int:
        return round(value / self.ratio)

    def point_to_css(self, x: float, y: float) -> tuple[int, int]:
        return self.to_css(x), self.to_css(y)
