import logging
import math
import uuid
from typing import Any, Dict, List, Optional

from arena.models import CLEARED, DAMAGE, PENDING, WARNING, ActiveSquare, Pattern, PatternSquare
from .scheduler import Scheduler
from .store import SessionStore


class Activation:
    """One in-flight square: pending -> warning -> damage -> cleared.

    All fire times are absolute and fixed at launch. Damage sweeps land on
    ``damage_at + k`` for each whole second ``k`` below ``duration``.
    """

    def __init__(self, square: PatternSquare, launched_at: float, warning_sec: float, instance_id: str):
        self.id = instance_id
        self.row = square.row
        self.col = square.col
        self.warning_at = launched_at + square.timing
        self.damage_at = self.warning_at + warning_sec
        self.clear_at = self.damage_at + square.duration
        self.sweeps_total = int(math.floor(square.duration))
        self.sweeps_done = 0
        self.phase = PENDING

    @property
    def next_fire_at(self) -> Optional[float]:
        if self.phase == PENDING:
            return self.warning_at
        if self.phase == WARNING:
            return self.damage_at
        if self.phase == DAMAGE:
            if self.sweeps_done < self.sweeps_total:
                return self.damage_at + self.sweeps_done
            return self.clear_at
        return None

    def __repr__(self):
        return f'<Activation {self.id[:8]} ({self.row},{self.col}) {self.phase}>'


class PatternSequencer:
    def __init__(
        self,
        store: SessionStore,
        scheduler: Scheduler,
        warning_sec: float = 1.0,
        default_duration: float = 3.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.warning_sec = warning_sec
        self.default_duration = default_duration
        self.logger = logger or logging.getLogger(__name__)
        self._in_flight: Dict[str, Activation] = {}

    def in_flight(self) -> List[Activation]:
        return list(self._in_flight.values())

    def parse(self, data: Any) -> Pattern:
        return Pattern.from_dict(data, self.default_duration)

    def launch(self, requester: str, pattern: Pattern) -> List[Activation]:
        """Schedule every square of ``pattern`` on its own timeline (DM only)."""
        self.store.require_dm(requester, 'launch patterns')
        launched_at = self.scheduler.now()
        activations = []
        for square in pattern.squares:
            activation = Activation(square, launched_at, self.warning_sec, uuid.uuid4().hex)
            self._in_flight[activation.id] = activation
            self.scheduler.call_at(activation.next_fire_at, self._step, activation)
            activations.append(activation)
        self.logger.info(
            f"[pattern-launch] name={pattern.name!r} squares={len(activations)} timings={pattern.timings()}"
        )
        return activations

    def _step(self, activation: Activation) -> None:
        if activation.phase == PENDING:
            activation.phase = WARNING
            self.store.add_active_square(ActiveSquare(activation.id, activation.row, activation.col, WARNING))
        elif activation.phase == WARNING:
            activation.phase = DAMAGE
            self.store.promote_to_damage(activation.id)
        elif activation.phase == DAMAGE and activation.sweeps_done < activation.sweeps_total:
            activation.sweeps_done += 1
            self.store.sweep_hits(activation.row, activation.col)
        elif activation.phase == DAMAGE:
            activation.phase = CLEARED
            self._in_flight.pop(activation.id, None)
            self.store.remove_active_square(activation.id)
            self.logger.debug(f"[square-clear] id={activation.id} cell=({activation.row},{activation.col})")
            return
        else:
            return
        self.scheduler.call_at(activation.next_fire_at, self._step, activation)
