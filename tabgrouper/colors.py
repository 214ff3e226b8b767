from __future__ import annotations

from typing import Sequence

from .rules import GROUP_COLORS

# "grey" is accepted on rules but left out of the automatic rotation.
ROTATION = tuple(c for c in GROUP_COLORS if c != "grey")


class ColorAllocator:
    def __init__(self, colors: Sequence[str] = ROTATION):
        if not colors:
            raise ValueError("ColorAllocator needs at least one color")
        self._colors = tuple(colors)
        self._index = 0

    def next_color(self) -> str:
        color = self._colors[self._index]
        self._index = (self._index + 1) % len(self._colors)
        return color
