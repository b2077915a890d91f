"""
Canonical workflow types (``incentive_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for entity state machines.  Program, enrollment,
accrual, claim and payout lifecycles are each declared once as a
``Workflow`` whose transition table is the only source of legal
``(from_state, action) -> to_state`` moves.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer packages.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* At most one transition per ``(from_state, action)`` pair.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    Guarantees: ``initial_state`` is a member of ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"{self.name}: initial state '{self.initial_state}' not in states"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"{self.name}: transition {t.action} references unknown state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state '{t.from_state}' has outgoing transition"
                )
            key = (t.from_state, t.action)
            if key in seen:
                raise ValueError(
                    f"{self.name}: duplicate transition for {t.action} from {t.from_state}"
                )
            seen.add(key)


def find_transition(workflow: Workflow, from_state: str, action: str) -> Transition | None:
    """Return the transition for ``action`` from ``from_state``, or None."""
    for t in workflow.transitions:
        if t.from_state == from_state and t.action == action:
            return t
    return None


def allowed_actions(workflow: Workflow, from_state: str) -> tuple[str, ...]:
    """Actions legal from ``from_state``, in declaration order."""
    return tuple(t.action for t in workflow.transitions if t.from_state == from_state)
