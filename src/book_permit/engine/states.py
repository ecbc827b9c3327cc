"""
Authorization attempt state machine.

One ``AuthorizationAttempt`` exists per in-flight borrow. It only moves
forward along the happy path, or sideways into FAILED from any state that
is not terminal.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet

from .exceptions import InvalidTransition

logger = logging.getLogger(__name__)


class AuthorizationState(str, Enum):
    IDLE = "idle"
    BUILDING_DOMAIN = "building_domain"
    FETCHING_NONCE = "fetching_nonce"
    COMPOSING_MESSAGE = "composing_message"
    AWAITING_SIGNATURE = "awaiting_signature"
    DECOMPOSING = "decomposing"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[AuthorizationState] = frozenset({AuthorizationState.DONE, AuthorizationState.FAILED})

_NEXT_STATE: Dict[AuthorizationState, AuthorizationState] = {
    AuthorizationState.IDLE: AuthorizationState.BUILDING_DOMAIN,
    AuthorizationState.BUILDING_DOMAIN: AuthorizationState.FETCHING_NONCE,
    AuthorizationState.FETCHING_NONCE: AuthorizationState.COMPOSING_MESSAGE,
    AuthorizationState.COMPOSING_MESSAGE: AuthorizationState.AWAITING_SIGNATURE,
    AuthorizationState.AWAITING_SIGNATURE: AuthorizationState.DECOMPOSING,
    AuthorizationState.DECOMPOSING: AuthorizationState.SUBMITTING,
    AuthorizationState.SUBMITTING: AuthorizationState.DONE,
}


def can_transition(current: AuthorizationState, target: AuthorizationState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if target == AuthorizationState.FAILED:
        return True
    return _NEXT_STATE.get(current) == target


class AuthorizationAttempt:
    """
    Tracks the state of a single (owner, spender, title) authorization.

    Example:
        attempt = AuthorizationAttempt(owner, spender, "Dune")
        attempt.advance(AuthorizationState.BUILDING_DOMAIN)
        attempt.advance(AuthorizationState.FAILED)
        attempt.advance(AuthorizationState.DONE)  # raises InvalidTransition
    """

    def __init__(self, owner: str, spender: str, title: str) -> None:
        self.owner = owner
        self.spender = spender
        self.title = title
        self.state = AuthorizationState.IDLE

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: AuthorizationState) -> None:
        """
        Move to ``target``.

        Raises:
            InvalidTransition: If ``target`` is not reachable from the current state.
        """
        if not can_transition(self.state, target):
            raise InvalidTransition(self.state.name, target.name)
        logger.debug("Borrow of %r: %s -> %s", self.title, self.state.name, target.name)
        self.state = target

    def __repr__(self) -> str:
        return f"AuthorizationAttempt(title={self.title!r}, state={self.state.name})"
