from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

Coord = Tuple[int, int, int]


class Direction(Enum):
    NORTH = "north"
    EAST = "east"
    SOUTH = "south"
    WEST = "west"
    UP = "up"
    DOWN = "down"

    @property
    def opposite(self) -> "Direction":
        return _OPPOSITE[self]

    @property
    def offset(self) -> Coord:
        return _OFFSET[self]

    @classmethod
    def parse(cls, value) -> "Direction":
        if isinstance(value, Direction):
            return value
        key = str(value).strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown direction {value!r}") from None


_OPPOSITE = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST: Direction.WEST,
    Direction.WEST: Direction.EAST,
    Direction.UP: Direction.DOWN,
    Direction.DOWN: Direction.UP,
}

# North/south run along z, east/west along x, up/down along y.
_OFFSET = {
    Direction.NORTH: (0, 0, 1),
    Direction.SOUTH: (0, 0, -1),
    Direction.EAST: (1, 0, 0),
    Direction.WEST: (-1, 0, 0),
    Direction.UP: (0, 1, 0),
    Direction.DOWN: (0, -1, 0),
}

_ALIASES = {
    "n": "north", "s": "south", "e": "east", "w": "west", "u": "up", "d": "down",
    "forward": "north", "back": "south", "right": "east", "left": "west",
}

DIRECTIONS: Tuple[Direction, ...] = tuple(Direction)


@dataclass(frozen=True)
class Socket:
    direction: Direction
    type: str
    id: str
    weight: float = 1.0

    def matches(self, other: "Socket") -> bool:
        return self.type == other.type and self.id == other.id


@dataclass(frozen=True)
class Tile:
    id: str
    sockets: Tuple[Socket, ...]
    weight: float = 1.0
    difficulty: Tuple[int, int] = (1, 10)
    tags: FrozenSet[str] = frozenset()
    _by_dir: Dict[Direction, Socket] = field(default=None, init=False, repr=False, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_dir", {s.direction: s for s in self.sockets})

    def socket(self, direction: Direction) -> Optional[Socket]:
        return self._by_dir.get(direction)

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def connects_to(self, other: "Tile", direction: Direction) -> bool:
        return compatible(self, other, direction)


def compatible(a: Tile, b: Tile, direction: Direction) -> bool:
    """True when ``b``, sitting one step from ``a`` towards ``direction``, fits ``a``."""
    mine = a.socket(direction)
    if mine is None:
        return False
    theirs = b.socket(direction.opposite)
    if theirs is None:
        return False
    return mine.matches(theirs)


_BOUNDS_RE = re.compile(r"^\s*(\d+)\s*[x×,]\s*(\d+)\s*[x×,]\s*(\d+)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class Bounds:
    x: int
    y: int
    z: int

    def __post_init__(self) -> None:
        if self.x <= 0 or self.y <= 0 or self.z <= 0:
            raise ValueError(f"grid bounds must be positive, got {self.label}")

    @classmethod
    def parse(cls, value) -> "Bounds":
        if isinstance(value, Bounds):
            return value
        if isinstance(value, str):
            m = _BOUNDS_RE.match(value)
            if not m:
                raise ValueError(f"cannot read grid bounds from {value!r}")
            return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if isinstance(value, dict):
            return cls(int(value["x"]), int(value["y"]), int(value["z"]))
        x, y, z = value
        return cls(int(x), int(y), int(z))

    @property
    def cell_count(self) -> int:
        return self.x * self.y * self.z

    @property
    def label(self) -> str:
        return f"{self.x} × {self.y} × {self.z}"

    def contains(self, coord: Coord) -> bool:
        x, y, z = coord
        return 0 <= x < self.x and 0 <= y < self.y and 0 <= z < self.z

    def coords(self) -> Iterator[Coord]:
        for x in range(self.x):
            for y in range(self.y):
                for z in range(self.z):
                    yield (x, y, z)

    def center(self) -> Coord:
        return (self.x // 2, 0, self.z // 2)


def step(coord: Coord, direction: Direction) -> Coord:
    dx, dy, dz = direction.offset
    return (coord[0] + dx, coord[1] + dy, coord[2] + dz)
