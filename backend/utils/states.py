"""
Ticket state classes and the thread transition table.

Zammad states are free-form names. Each one falls into a StateClass that
decides how its Discord thread looks:

- OPEN:            visible, role members present
- HIDDEN:          role members removed, thread stays in the channel list
- HIDDEN_ARCHIVED: role members removed and thread archived
- CLOSED:          locked, archived, role members removed

TRANSITIONS maps every (old class, new class) pair to the thread effects
that move a thread between them. The table is checked at import time.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Tuple


CLOSED_STATES = frozenset(
    {"closed", "closed (locked)", "closed (locked until)", "merged", "removed"}
)
HIDDEN_STATES = frozenset({"pending close"})
HIDDEN_ARCHIVED_STATES = frozenset({"waiting for reply"})

WAITING_FOR_REPLY = "waiting for reply"


class TransitionTableError(RuntimeError):
    pass


class StateClass(enum.Enum):
    OPEN = "open"
    HIDDEN = "hidden"
    HIDDEN_ARCHIVED = "hidden_archived"
    CLOSED = "closed"


class Effect(enum.Enum):
    UNLOCK = "unlock"
    UNARCHIVE = "unarchive"
    ADD_MEMBERS = "add_members"
    REMOVE_MEMBERS = "remove_members"
    LOCK = "lock"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class TransitionPlan:
    old: StateClass
    new: StateClass
    effects: Tuple[Effect, ...] = ()
    requires_confirmation: bool = False

    def has(self, effect: Effect) -> bool:
        return effect in self.effects

    @property
    def is_noop(self) -> bool:
        return not self.effects


def normalize_state(state) -> str:
    return (state or "").strip().lower()


def classify_state(state: str) -> StateClass:
    normalized = normalize_state(state)
    if normalized in CLOSED_STATES:
        return StateClass.CLOSED
    if normalized in HIDDEN_ARCHIVED_STATES:
        return StateClass.HIDDEN_ARCHIVED
    if normalized in HIDDEN_STATES:
        return StateClass.HIDDEN
    return StateClass.OPEN


def is_closed_state(state: str) -> bool:
    return classify_state(state) is StateClass.CLOSED


_O, _H, _HA, _C = (
    StateClass.OPEN,
    StateClass.HIDDEN,
    StateClass.HIDDEN_ARCHIVED,
    StateClass.CLOSED,
)
_CLOSE = (Effect.REMOVE_MEMBERS, Effect.LOCK, Effect.ARCHIVE)

TRANSITIONS: Dict[Tuple[StateClass, StateClass], Tuple[Tuple[Effect, ...], bool]] = {
    (_O, _O): ((), False),
    (_O, _H): ((Effect.REMOVE_MEMBERS,), False),
    (_O, _HA): ((Effect.REMOVE_MEMBERS, Effect.ARCHIVE), False),
    (_O, _C): (_CLOSE, False),
    (_H, _O): ((Effect.UNARCHIVE, Effect.ADD_MEMBERS), False),
    (_H, _H): ((), False),
    (_H, _HA): ((Effect.REMOVE_MEMBERS, Effect.ARCHIVE), False),
    (_H, _C): (_CLOSE, False),
    (_HA, _O): ((Effect.UNARCHIVE, Effect.ADD_MEMBERS), False),
    (_HA, _H): ((Effect.UNARCHIVE,), False),
    (_HA, _HA): ((), False),
    (_HA, _C): (_CLOSE, False),
    # Leaving CLOSED always needs a fresh read confirming the ticket reopened
    (_C, _O): ((Effect.UNLOCK, Effect.UNARCHIVE, Effect.ADD_MEMBERS), True),
    (_C, _H): ((Effect.UNLOCK, Effect.UNARCHIVE), True),
    # Archived threads only accept edits that also unarchive them
    (_C, _HA): ((Effect.UNLOCK, Effect.UNARCHIVE, Effect.ARCHIVE), True),
    (_C, _C): ((), False),
}


def _validate_transitions() -> None:
    missing = [
        (old.value, new.value)
        for old in StateClass
        for new in StateClass
        if (old, new) not in TRANSITIONS
    ]
    if missing:
        raise TransitionTableError(f"Unhandled state transitions: {missing}")
    for (old, new), (effects, _) in TRANSITIONS.items():
        if Effect.ADD_MEMBERS in effects and Effect.REMOVE_MEMBERS in effects:
            raise TransitionTableError(
                f"{old.value} -> {new.value} both adds and removes members"
            )
        if Effect.LOCK in effects and Effect.UNLOCK in effects:
            raise TransitionTableError(
                f"{old.value} -> {new.value} both locks and unlocks"
            )


_validate_transitions()


def plan_transition(old_state: str, new_state: str) -> TransitionPlan:
    old_class = classify_state(old_state)
    new_class = classify_state(new_state)
    effects, requires_confirmation = TRANSITIONS[(old_class, new_class)]
    return TransitionPlan(
        old=old_class,
        new=new_class,
        effects=effects,
        requires_confirmation=requires_confirmation,
    )


def plan_for_new_thread(state: str) -> TransitionPlan:
    """Effects for a thread created directly in `state` (created open)."""
    return plan_transition("open", state)
