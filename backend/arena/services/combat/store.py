import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from arena.models import (
    DAMAGE,
    PALETTE,
    ActiveSquare,
    Pattern,
    Player,
    Session,
    coerce_int,
)
from .errors import InvalidState, MalformedInput, Unauthorized

Subscriber = Callable[[Dict[str, Any]], None]


class SessionStore:
    """Owns the single game session and serializes every change to it.

    All mutations run under one re-entrant lock and end by publishing the
    full snapshot to every subscriber, so observers see snapshots in the
    same order the mutations happened. Rejected commands raise a
    ``CommandRejected`` subclass before anything is changed.
    """

    def __init__(
        self,
        rows: int = 10,
        cols: int = 10,
        default_speed: int = 3,
        max_grid_size: int = 100,
        max_image_bytes: int = 5 * 1024 * 1024,
        allow_dm_takeover: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = Session(rows, cols)
        self.default_speed = default_speed
        self.max_grid_size = max_grid_size
        self.max_image_bytes = max_image_bytes
        self.allow_dm_takeover = allow_dm_takeover
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []
        self._color_index = 0

    # ---- publishing ----

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self.session.to_dict()

    def publish(self) -> None:
        with self._lock:
            snapshot = self.session.to_dict()
            for callback in list(self._subscribers):
                try:
                    callback(snapshot)
                except Exception:
                    self.logger.exception(f"[publish-error] subscriber={callback!r}")

    # ---- queries ----

    def is_dm(self, sid: Optional[str]) -> bool:
        return sid is not None and self.session.dm == sid

    def get_player(self, sid: str) -> Optional[Player]:
        return self.session.players.get(sid)

    # ---- validation helpers ----

    def require_dm(self, requester: Optional[str], action: str) -> None:
        if not self.is_dm(requester):
            self.logger.warning(f"[unauthorized] action={action} sid={requester} dm={self.session.dm}")
            raise Unauthorized(f'only the DM may {action}')

    def _grid_size(self, rows: Any, cols: Any):
        rows = coerce_int(rows, 'rows')
        cols = coerce_int(cols, 'cols')
        if not (1 <= rows <= self.max_grid_size and 1 <= cols <= self.max_grid_size):
            raise MalformedInput(f'grid size must be between 1 and {self.max_grid_size}')
        return rows, cols

    def _image(self, image: Any):
        if image is None:
            return None
        if not isinstance(image, (str, bytes, bytearray)):
            raise MalformedInput('image payload must be a string or bytes')
        if len(image) > self.max_image_bytes:
            raise MalformedInput(f'image payload exceeds {self.max_image_bytes} bytes')
        return bytes(image) if isinstance(image, bytearray) else image

    def _next_color(self) -> str:
        color = PALETTE[self._color_index % len(PALETTE)]
        self._color_index += 1
        return color

    def _clamp_players(self) -> None:
        s = self.session
        for player in s.players.values():
            row = min(max(player.row, 0), s.grid_rows - 1)
            col = min(max(player.col, 0), s.grid_cols - 1)
            if (row, col) != (player.row, player.col):
                self.logger.info(f"[clamp] player={player.id} ({player.row},{player.col}) -> ({row},{col})")
                player.row, player.col = row, col

    # ---- client commands ----

    def create_session(
        self,
        rows: Any,
        cols: Any,
        requester: str,
        on_assigned: Optional[Callable[[Optional[str]], None]] = None,
    ) -> Optional[str]:
        """Make ``requester`` the DM of a fresh grid. Returns the previous DM.

        ``on_assigned(previous)`` runs under the lock, so role announcements
        for concurrent creates go out in the order the DM slot changed hands.
        """
        with self._lock:
            rows, cols = self._grid_size(rows, cols)
            s = self.session
            previous = s.dm
            if previous is not None and previous != requester:
                if not self.allow_dm_takeover:
                    self.logger.warning(f"[create-reject] sid={requester} dm={s.dm}")
                    raise Unauthorized('a DM already owns this session')
                self.logger.info(f"[dm-takeover] previous={s.dm} new={requester}")
            s.dm = requester
            s.grid_rows, s.grid_cols = rows, cols
            self._clamp_players()
            self.logger.info(f"[create] dm={requester} grid={rows}x{cols}")
            self.publish()
            if on_assigned is not None:
                on_assigned(previous)
            return previous

    def add_player(self, sid: str, name: Any) -> Player:
        with self._lock:
            s = self.session
            if sid in s.players:
                raise InvalidState('already joined')
            name = str(name).strip() if name is not None else ''
            row, col = s.center
            player = Player(
                id=sid,
                name=name or f'Player {len(s.players) + 1}',
                row=row,
                col=col,
                color=self._next_color(),
                speed=self.default_speed,
            )
            s.players[sid] = player
            self.logger.info(f"[join] player={sid} name={player.name!r} color={player.color}")
            self.publish()
            return player

    def remove_player(self, sid: str) -> bool:
        with self._lock:
            player = self.session.players.pop(sid, None)
            if player is None:
                return False
            self.logger.info(f"[leave] player={sid} name={player.name!r}")
            self.publish()
            return True

    def release_dm(self, sid: str) -> bool:
        with self._lock:
            if not self.is_dm(sid):
                return False
            self.session.dm = None
            self.logger.info(f"[dm-leave] sid={sid}")
            self.publish()
            return True

    def move_player(self, sid: str, row: Any, col: Any) -> Player:
        with self._lock:
            player = self.session.players.get(sid)
            if player is None:
                raise InvalidState('not a player')
            row = coerce_int(row, 'row')
            col = coerce_int(col, 'col')
            if not self.session.in_bounds(row, col):
                raise MalformedInput(f'({row},{col}) is outside the grid')
            distance = player.distance_to(row, col)
            if distance > player.speed_remaining:
                self.logger.warning(
                    f"[move-reject] player={sid} distance={distance} remaining={player.speed_remaining}"
                )
                raise InvalidState('not enough movement left')
            player.row, player.col = row, col
            player.speed_remaining -= distance
            self.publish()
            return player

    def set_speed(self, requester: str, player_id: Any, speed: Any) -> Player:
        with self._lock:
            self.require_dm(requester, 'set speed')
            player = self.session.players.get(player_id) if isinstance(player_id, str) else None
            if player is None:
                raise InvalidState('unknown player')
            speed = coerce_int(speed, 'speed')
            if speed < 0:
                raise MalformedInput('speed must not be negative')
            player.speed = speed
            player.speed_remaining = speed
            self.publish()
            return player

    def resize_grid(self, requester: str, rows: Any, cols: Any) -> None:
        with self._lock:
            self.require_dm(requester, 'resize the grid')
            rows, cols = self._grid_size(rows, cols)
            self.session.grid_rows, self.session.grid_cols = rows, cols
            self._clamp_players()
            self.publish()

    def set_background(self, requester: str, image: Any) -> None:
        with self._lock:
            self.require_dm(requester, 'change the background')
            self.session.background_image = self._image(image)
            self.publish()

    def set_token_image(self, sid: str, image: Any) -> None:
        with self._lock:
            player = self.session.players.get(sid)
            if player is None:
                self.logger.warning(f"[unauthorized] action=token-image sid={sid}")
                raise Unauthorized('only a joined player may upload a token')
            player.token_image = self._image(image)
            self.publish()

    def save_pattern(self, requester: str, pattern: Pattern) -> int:
        with self._lock:
            self.require_dm(requester, 'save patterns')
            self.session.saved_patterns.append(pattern)
            self.logger.info(f"[pattern-save] name={pattern.name!r} squares={len(pattern.squares)}")
            self.publish()
            return len(self.session.saved_patterns) - 1

    def delete_pattern(self, requester: str, index: Any) -> Pattern:
        with self._lock:
            self.require_dm(requester, 'delete patterns')
            index = coerce_int(index, 'index')
            patterns = self.session.saved_patterns
            if not 0 <= index < len(patterns):
                raise InvalidState(f'no saved pattern at index {index}')
            pattern = patterns.pop(index)
            self.logger.info(f"[pattern-delete] index={index} name={pattern.name!r}")
            self.publish()
            return pattern

    def saved_pattern(self, index: Any) -> Pattern:
        with self._lock:
            index = coerce_int(index, 'index')
            patterns = self.session.saved_patterns
            if not 0 <= index < len(patterns):
                raise InvalidState(f'no saved pattern at index {index}')
            return patterns[index]

    # ---- timer driven ----

    def regenerate_speed(self) -> None:
        with self._lock:
            for player in self.session.players.values():
                if player.speed_remaining < player.speed:
                    player.speed_remaining = player.speed
            self.publish()

    def add_active_square(self, square: ActiveSquare) -> None:
        with self._lock:
            self.session.active_squares.append(square)
            self.publish()

    def promote_to_damage(self, instance_id: str) -> Optional[ActiveSquare]:
        with self._lock:
            current = self._pop_active(instance_id)
            if current is None:
                return None
            damage = ActiveSquare(current.id, current.row, current.col, DAMAGE)
            self.session.active_squares.append(damage)
            self.publish()
            return damage

    def sweep_hits(self, row: int, col: int) -> List[str]:
        with self._lock:
            hit = []
            for player in self.session.players.values():
                if player.row == row and player.col == col:
                    player.hits += 1
                    hit.append(player.id)
            if hit:
                self.logger.debug(f"[hit] cell=({row},{col}) players={hit}")
            self.publish()
            return hit

    def remove_active_square(self, instance_id: str) -> bool:
        with self._lock:
            removed = self._pop_active(instance_id) is not None
            if removed:
                self.publish()
            return removed

    def _pop_active(self, instance_id: str) -> Optional[ActiveSquare]:
        squares = self.session.active_squares
        for i, square in enumerate(squares):
            if square.id == instance_id:
                return squares.pop(i)
        return None
