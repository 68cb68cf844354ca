"""
Canonical workflow types (``studio_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  Payroll cycles and
compensation slips declare their lifecycles with these types so that
every status change is looked up in a declared transition table instead
of being checked ad hoc.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only; the owning service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``requires_privilege=True`` marks transitions only elevated actors may
    trigger.  ``emits_side_effects=True`` marks transitions that enqueue
    notifications or ledger postings.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    requires_privilege: bool = False
    emits_side_effects: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def transition_for(self, current_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``current_state``, if any."""
        for transition in self.transitions:
            if transition.from_state == current_state and transition.action == action:
                return transition
        return None

    def allowed_actions(self, current_state: str) -> tuple[str, ...]:
        """Actions with a declared transition out of ``current_state``."""
        return tuple(
            t.action for t in self.transitions if t.from_state == current_state
        )
