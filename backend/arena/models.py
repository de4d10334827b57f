import math
from typing import Any, Dict, List, Optional

from arena.services.combat.errors import MalformedInput

PALETTE = ['#3B82F6', '#10B981', '#F59E0B', '#EF4444', '#8B5CF6', '#EC4899', '#14B8A6', '#F97316']

# Attack square phases, in the order an activation walks through them
PENDING = 'pending'
WARNING = 'warning'
DAMAGE = 'damage'
CLEARED = 'cleared'


def coerce_int(value: Any, field: str) -> int:
    """Return ``value`` as an int, rejecting bools, fractions and junk."""
    if isinstance(value, bool):
        raise MalformedInput(f'{field} must be an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise MalformedInput(f'{field} must be an integer')


def coerce_seconds(value: Any, default: float) -> float:
    """Lenient number parsing for pattern timings: junk becomes ``default``."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(seconds) or math.isinf(seconds):
        return default
    return max(0.0, seconds)


class Player:
    def __init__(self, id: str, name: str, row: int, col: int, color: str, speed: int):
        self.id = id
        self.name = name
        self.row = row
        self.col = col
        self.color = color
        self.speed = speed
        self.speed_remaining = speed
        self.hits = 0
        self.token_image = None

    def distance_to(self, row: int, col: int) -> int:
        return abs(self.row - row) + abs(self.col - col)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'row': self.row,
            'col': self.col,
            'color': self.color,
            'speed': self.speed,
            'speedRemaining': self.speed_remaining,
            'hits': self.hits,
            'tokenImage': self.token_image,
        }


class PatternSquare:
    __slots__ = ('row', 'col', 'timing', 'duration')

    def __init__(self, row: int, col: int, timing: float = 0.0, duration: float = 3.0):
        self.row = row
        self.col = col
        self.timing = timing
        self.duration = duration

    @classmethod
    def from_dict(cls, data: Any, default_duration: float = 3.0) -> 'PatternSquare':
        if not isinstance(data, dict):
            raise MalformedInput('pattern square must be an object')
        return cls(
            row=coerce_int(data.get('row'), 'row'),
            col=coerce_int(data.get('col'), 'col'),
            timing=coerce_seconds(data.get('timing'), 0.0),
            duration=coerce_seconds(data.get('duration'), default_duration),
        )

    def to_dict(self):
        return {'row': self.row, 'col': self.col, 'timing': self.timing, 'duration': self.duration}


class Pattern:
    """A DM-authored attack template. Never mutated after it is built."""

    def __init__(self, name: str, squares: List[PatternSquare]):
        self.name = name
        self.squares = tuple(squares)

    @classmethod
    def from_dict(cls, data: Any, default_duration: float = 3.0) -> 'Pattern':
        if not isinstance(data, dict):
            raise MalformedInput('pattern must be an object')
        squares = data.get('squares')
        if not isinstance(squares, (list, tuple)):
            raise MalformedInput('pattern squares must be a list')
        name = data.get('name')
        return cls(
            name='' if name is None else str(name),
            squares=[PatternSquare.from_dict(s, default_duration) for s in squares],
        )

    def timings(self) -> List[float]:
        return sorted({s.timing for s in self.squares})

    def to_dict(self):
        return {'name': self.name, 'squares': [s.to_dict() for s in self.squares]}


class ActiveSquare:
    def __init__(self, id: str, row: int, col: int, phase: str = WARNING):
        self.id = id
        self.row = row
        self.col = col
        self.phase = phase

    def to_dict(self):
        return {'id': self.id, 'row': self.row, 'col': self.col, 'phase': self.phase}


class Session:
    def __init__(self, rows: int = 10, cols: int = 10):
        self.grid_rows = rows
        self.grid_cols = cols
        self.players: Dict[str, Player] = {}
        self.dm: Optional[str] = None
        self.saved_patterns: List[Pattern] = []
        self.active_squares: List[ActiveSquare] = []
        self.background_image = None

    @property
    def center(self):
        return self.grid_rows // 2, self.grid_cols // 2

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.grid_rows and 0 <= col < self.grid_cols

    def to_dict(self):
        return {
            'gridRows': self.grid_rows,
            'gridCols': self.grid_cols,
            'players': {sid: p.to_dict() for sid, p in self.players.items()},
            'dm': self.dm,
            'savedPatterns': [p.to_dict() for p in self.saved_patterns],
            'activeSquares': [s.to_dict() for s in self.active_squares],
            'backgroundImage': self.background_image,
        }
