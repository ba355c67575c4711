"""Explicit transition tables for expense and voucher status.

Status is never mutated ad hoc: every change goes through
``StateMachine.next_state``, which rejects any (state, action) pair that is
not in the table.
"""
from dataclasses import dataclass

from reimburse.core.errors import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    from_states: tuple[str, ...]
    action: str
    to_state: str


class StateMachine:
    def __init__(self, entity: str, transitions: list[Transition]) -> None:
        self.entity = entity
        self._table: dict[tuple[str, str], str] = {}
        for t in transitions:
            for state in t.from_states:
                key = (state, t.action)
                if key in self._table:
                    raise ValueError(f"Duplicate transition {key} in {entity} state machine.")
                self._table[key] = t.to_state

    def can(self, current: str, action: str) -> bool:
        return (current, action) in self._table

    def next_state(self, current: str, action: str) -> str:
        try:
            return self._table[(current, action)]
        except KeyError:
            raise InvalidTransitionError(self.entity, current, action) from None

    def allowed_actions(self, current: str) -> list[str]:
        return sorted(action for (state, action) in self._table if state == current)
