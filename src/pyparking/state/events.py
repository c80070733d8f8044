"""Change records produced by the state store.

Only real transitions are reported: an assignment that reasserts the
current value never produces a change.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from pyparking.models.gate import GateKind, GatePhase


class SpaceChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    space_id: int
    previous: bool
    current: bool
    changed_at: datetime

    @property
    def is_entry(self) -> bool:
        return not self.previous and self.current

    @property
    def is_exit(self) -> bool:
        return self.previous and not self.current


class GateChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: GateKind
    previous: GatePhase
    current: GatePhase
    changed_at: datetime
