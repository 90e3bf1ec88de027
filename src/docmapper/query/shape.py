# src/docmapper/query/shape.py

from typing import Any, Dict, List, Sequence, Tuple

Point = Tuple[float, float]


class Shape:
    """A legacy-coordinate shape usable with ``FieldEnd.within``."""

    def __init__(self, geometry: str, *points: Any):
        self.geometry = geometry
        self.points: Tuple[Any, ...] = points

    @classmethod
    def box(cls, bottom_left: Point, upper_right: Point) -> "Shape":
        return cls("$box", bottom_left, upper_right)

    @classmethod
    def center(cls, center: Point, radius: float) -> "Shape":
        return cls("$center", center, radius)

    @classmethod
    def center_sphere(cls, center: Point, radius: float) -> "Shape":
        """``radius`` is in radians."""
        return cls("$centerSphere", center, radius)

    @classmethod
    def polygon(cls, *points: Point) -> "Shape":
        if len(points) < 3:
            raise ValueError("A polygon needs at least three points.")
        return cls("$polygon", *points)

    def to_document(self) -> Dict[str, List[Any]]:
        return {self.geometry: [_as_list(p) for p in self.points]}

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Shape) and self.to_document() == other.to_document()

    def __repr__(self) -> str:
        return f"Shape({self.geometry!r}, {list(self.points)!r})"


def _as_list(value: Any) -> Any:
    if isinstance(value, Sequence) and not isinstance(value, str):
        return [_as_list(v) for v in value]
    return value
