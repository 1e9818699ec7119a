"""
Declarative state machines (``fulfillment_kernel.domain.workflow``).

The order lifecycle and the invoice status lifecycle are each one
``Workflow`` value: a list of states and the edges between them.  Services
look up ``(current state, action)`` here and reject anything without an
edge, so the legal moves of each lifecycle are written down exactly once.

Pure value objects; nothing in this module touches the database.

A workflow is checked when it is built:

* every edge starts and ends at a declared state, as does ``initial_state``;
* terminal states have no outgoing edges;
* each ``(from_state, action)`` pair has at most one edge.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Guard:
    """Named precondition on an edge; the owning service evaluates it."""

    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    # After this edge commits the partner's invoice trigger is consulted
    triggers_invoice: bool = False


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    _edges: dict[tuple[str, str], Transition] = field(
        init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        declared = set(self.states)
        if self.initial_state not in declared:
            self._fail(f"initial state '{self.initial_state}' is not a declared state")

        edges: dict[tuple[str, str], Transition] = {}
        for t in self.transitions:
            unknown = [s for s in (t.from_state, t.to_state) if s not in declared]
            if unknown:
                self._fail(f"transition '{t.action}' references unknown state '{unknown[0]}'")
            if t.from_state in self.terminal_states:
                self._fail(f"terminal state '{t.from_state}' has outgoing transition '{t.action}'")
            if (t.from_state, t.action) in edges:
                self._fail(f"duplicate transition '{t.action}' from '{t.from_state}'")
            edges[(t.from_state, t.action)] = t

        object.__setattr__(self, "_edges", edges)

    def _fail(self, problem: str) -> None:
        raise ValueError(f"Workflow {self.name}: {problem}")

    def transition_for(self, state: str, action: str) -> Transition | None:
        """The edge for ``action`` out of ``state``, or None if illegal."""
        return self._edges.get((state, action))

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(action for (src, action) in self._edges if src == state)

    @property
    def actions(self) -> tuple[str, ...]:
        """Every distinct action, in declaration order."""
        return tuple(dict.fromkeys(t.action for t in self.transitions))

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
