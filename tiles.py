# tiles.py — tile catalog loader, validation and queries
from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from errors import CatalogError
from models import DIRECTIONS, Direction, Socket, Tile, compatible


def _to_float(x: Any) -> Optional[float]:
    try:
        return float(x)
    except Exception:
        return None


def _to_int(x: Any) -> Optional[int]:
    try:
        return int(float(x))
    except Exception:
        return None


def _as_listish(val: Any) -> List[Any]:
    if val is None:
        return []
    if isinstance(val, (list, tuple)):
        return list(val)
    return [val]


def _first(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def _parse_socket(raw: Any, tile_id: str, direction_hint: Any = None) -> Socket:
    if isinstance(raw, Socket):
        return raw
    if isinstance(raw, (list, tuple)):
        # (direction, type, id[, weight])
        if len(raw) not in (3, 4):
            raise CatalogError(f"socket entry {raw!r} needs direction, type and id", tile_id=tile_id)
        raw = {
            "direction": raw[0],
            "type": raw[1],
            "id": raw[2],
            "weight": raw[3] if len(raw) == 4 else 1,
        }
    if not isinstance(raw, Mapping):
        raise CatalogError(f"socket entry {raw!r} is not a mapping", tile_id=tile_id)

    dir_raw = _first(raw, "direction", "dir", default=direction_hint)
    try:
        direction = Direction.parse(dir_raw)
    except ValueError as e:
        raise CatalogError(str(e), tile_id=tile_id) from None

    sock_type = _first(raw, "type", "socket_type", "socketType", default="connector")
    sock_id = _first(raw, "id", "socket_id", "socketId")
    if sock_id is None:
        raise CatalogError(f"{direction.value} socket has no compatibility id", tile_id=tile_id)
    weight = _to_float(_first(raw, "weight", default=1.0))
    if weight is None or weight <= 0:
        raise CatalogError(f"{direction.value} socket weight must be positive", tile_id=tile_id)
    return Socket(direction, str(sock_type), str(sock_id), weight)


def _socket_entries(raw_sockets: Any) -> Iterator[Tuple[Any, Any]]:
    # Sockets may arrive as a list of records or as {direction: record}.
    if isinstance(raw_sockets, Mapping):
        for k, v in raw_sockets.items():
            yield k, v
        return
    for entry in _as_listish(raw_sockets):
        yield None, entry


def parse_tile(record: Any) -> Tile:
    if isinstance(record, Tile):
        return record
    if not isinstance(record, Mapping):
        raise CatalogError(f"tile record {record!r} is not a mapping")

    tile_id = _first(record, "id", "name", "tile_id")
    if tile_id is None or str(tile_id).strip() == "":
        raise CatalogError("tile record has no id")
    tile_id = str(tile_id).strip()

    sockets: List[Socket] = []
    seen: Dict[Direction, Socket] = {}
    for hint, raw in _socket_entries(record.get("sockets")):
        sock = _parse_socket(raw, tile_id, direction_hint=hint)
        if sock.direction in seen:
            raise CatalogError(f"duplicate socket facing {sock.direction.value}", tile_id=tile_id)
        seen[sock.direction] = sock
        sockets.append(sock)

    weight = _to_float(_first(record, "weight", "base_weight", "baseWeight", default=1.0))
    if weight is None or not weight > 0:
        raise CatalogError("base weight must be positive", tile_id=tile_id)

    diff_raw = _as_listish(_first(record, "difficulty", "difficulty_range", "difficultyRange", default=[1, 10]))
    if len(diff_raw) == 1:
        diff_raw = diff_raw * 2
    lo, hi = (_to_int(diff_raw[0]), _to_int(diff_raw[1])) if len(diff_raw) >= 2 else (None, None)
    if lo is None or hi is None:
        raise CatalogError(f"difficulty {diff_raw!r} is not an interval", tile_id=tile_id)
    if lo > hi:
        raise CatalogError(f"difficulty interval [{lo}, {hi}] is inverted", tile_id=tile_id)

    tags = frozenset(str(t).strip() for t in _as_listish(record.get("tags")) if str(t).strip())

    order = {d: i for i, d in enumerate(DIRECTIONS)}
    sockets.sort(key=lambda s: order[s.direction])
    return Tile(tile_id, tuple(sockets), float(weight), (lo, hi), tags)


class TileCatalog:
    """Ordered, immutable tile list plus a cached adjacency table."""

    def __init__(self, tiles: Iterable[Tile]):
        self._tiles: Tuple[Tile, ...] = tuple(tiles)
        self._by_id: Dict[str, Tile] = {}
        for t in self._tiles:
            if t.id in self._by_id:
                raise CatalogError("duplicate tile id", tile_id=t.id)
            self._by_id[t.id] = t
        self._validate()
        # (tile id, direction) -> ids of tiles that may sit on that side
        self._table: Dict[Tuple[str, Direction], FrozenSet[str]] = {}
        for a in self._tiles:
            for d in DIRECTIONS:
                self._table[(a.id, d)] = frozenset(b.id for b in self._tiles if compatible(a, b, d))

    def _validate(self) -> None:
        if not self._tiles:
            raise CatalogError("catalog is empty")
        lone = len(self._tiles) == 1
        for t in self._tiles:
            if not t.sockets and not lone:
                raise CatalogError("tile has no sockets", tile_id=t.id)
            if not t.weight > 0:
                raise CatalogError("base weight must be positive", tile_id=t.id)
            dirs = [s.direction for s in t.sockets]
            if len(dirs) != len(set(dirs)):
                raise CatalogError("duplicate socket direction", tile_id=t.id)
            for s in t.sockets:
                if s.weight <= 0:
                    raise CatalogError(f"{s.direction.value} socket weight must be positive", tile_id=t.id)

    # --- sequence protocol ---
    def __len__(self) -> int:
        return len(self._tiles)

    def __iter__(self) -> Iterator[Tile]:
        return iter(self._tiles)

    def __getitem__(self, idx: int) -> Tile:
        return self._tiles[idx]

    def __contains__(self, tile_id: object) -> bool:
        return tile_id in self._by_id

    @property
    def tiles(self) -> Tuple[Tile, ...]:
        return self._tiles

    def ids(self) -> List[str]:
        return [t.id for t in self._tiles]

    def get(self, tile_id: str) -> Tile:
        try:
            return self._by_id[tile_id]
        except KeyError:
            raise KeyError(f"unknown tile id {tile_id!r}") from None

    def compatible_ids(self, tile_id: str, direction: Direction) -> FrozenSet[str]:
        return self._table[(tile_id, direction)]

    # --- queries ---
    def by_tag(self, tag: str) -> List[Tile]:
        return [t for t in self._tiles if tag in t.tags]

    def in_difficulty_range(self, lo: int, hi: int) -> List[Tile]:
        return [t for t in self._tiles if t.difficulty[0] >= lo and t.difficulty[1] <= hi]

    def validate_connections(self) -> List[str]:
        """Ids of tiles with no socket that matches any tile in the catalog."""
        dead = []
        for t in self._tiles:
            if not any(self._table[(t.id, d)] for d in DIRECTIONS):
                dead.append(t.id)
        return dead

    def reweighted(self, prior: Mapping[str, float], blend: float = 0.5) -> "TileCatalog":
        """Blend base weights towards ``prior`` (tile id -> normalized frequency).

        Tiles missing from ``prior`` keep their base weight scaled by ``1 - blend``
        so no tile ever reaches a non-positive weight.
        """
        blend = max(0.0, min(1.0, float(blend)))
        total = sum(t.weight for t in self._tiles)
        out = []
        for t in self._tiles:
            share = float(prior.get(t.id, 0.0)) * total
            w = (1.0 - blend) * t.weight + blend * share
            if w <= 0:
                w = t.weight * 1e-3
            out.append(Tile(t.id, t.sockets, w, t.difficulty, t.tags))
        return TileCatalog(out)

    def to_payload(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": t.id,
                "weight": t.weight,
                "difficulty": list(t.difficulty),
                "tags": sorted(t.tags),
                "sockets": [
                    {"direction": s.direction.value, "type": s.type, "id": s.id, "weight": s.weight}
                    for s in t.sockets
                ],
            }
            for t in self._tiles
        ]


def parse_catalog(payload: Any) -> TileCatalog:
    """
    Build a :class:`TileCatalog` from JSON-like input.
    Accepts a list of tile records, ``{"tiles": [...]}``, or an existing catalog.
    Raises :class:`CatalogError` on anything malformed.
    """
    if isinstance(payload, TileCatalog):
        return payload
    if isinstance(payload, Mapping):
        if "tiles" not in payload:
            raise CatalogError("catalog payload has no 'tiles' list")
        payload = payload["tiles"]
    if not isinstance(payload, (list, tuple)):
        raise CatalogError(f"catalog must be a list of tiles, got {type(payload).__name__}")
    return TileCatalog(parse_tile(rec) for rec in payload)


__all__ = ["TileCatalog", "parse_catalog", "parse_tile"]
