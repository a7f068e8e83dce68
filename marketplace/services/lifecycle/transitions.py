"""
Single place that decides whether a lifecycle move is legal.

Both engines describe their state graphs as plain mappings from a state to
the set of states it may move to and run every requested move through
``validate_transition``. No engine keeps its own if/else chain.
"""

from typing import Any, Hashable, Mapping, TypeVar

from marketplace.core.exceptions import InvalidStateTransitionError

S = TypeVar("S", bound=Hashable)

TransitionMap = Mapping[S, frozenset]


def validate_transition(
    current: S,
    requested: S,
    allowed_map: TransitionMap,
    **context: Any,
) -> S:
    """
    Check a requested move against a transition graph.

    Args:
        current: State the entity is in now
        requested: State the caller wants to move to
        allowed_map: Mapping of state to the states reachable from it
        **context: Extra details attached to the error (entity id, axis)

    Returns:
        The requested state, so callers can assign the result directly

    Raises:
        InvalidStateTransitionError: If ``requested`` is not reachable
            from ``current``
    """
    allowed = allowed_map.get(current, frozenset())
    if requested not in allowed:
        raise InvalidStateTransitionError(current, requested, allowed, **context)
    return requested


def allowed_transitions(current: S, allowed_map: TransitionMap) -> frozenset:
    """States reachable in one move from ``current``."""
    return frozenset(allowed_map.get(current, frozenset()))


def is_terminal(state: S, allowed_map: TransitionMap) -> bool:
    """True when no move leaves ``state``."""
    return not allowed_map.get(state)
