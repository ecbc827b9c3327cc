"""
Permit Borrow Client

Borrows books from the library contract with a single signed EIP-2612
permit instead of a separate ``approve`` transaction.

Flow:
    1. Validate the request, then resolve the owner from the signing agent
    2. Build the token's EIP-712 domain and fetch a fresh nonce
    3. Compose the permit and wait for the agent's signature
    4. Decompose the signature and call ``borrow(title, value, deadline, v, r, s)``

Only one attempt per (owner, spender, title) runs at a time. A failed
attempt is never retried here; signing again needs fresh consent.
"""

import logging
import time
from contextlib import aclosing
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from ..adapters.bases import LibraryContract, PermitTokenReader, SigningAgent
from ..adapters.evm.adapter import BookLibraryAdapter, create_async_web3
from ..adapters.evm.constants import DEFAULT_PERMIT_VALIDITY_SECONDS, LibraryConfig
from ..adapters.evm.schemas import BorrowRequest, BorrowResult
from ..adapters.evm.signatures import LocalAccountAgent
from ..adapters.evm.tokens import ERC20PermitToken
from ..engine.events import (
    AuthorizationFailedEvent,
    BaseEvent,
    BorrowRequestedEvent,
    BorrowSubmittedEvent,
    Dependencies,
    EventBus,
    EventHookFunc,
)
from ..engine.exceptions import (
    AgentUnavailableError,
    AuthorizationInProgressError,
    BookPermitError,
    ConfigurationError,
    InvalidPermitParametersError,
)
from ..engine.executors import EventChain
from ..engine.states import AuthorizationAttempt, AuthorizationState
from .flows import setup_event_bus

logger = logging.getLogger(__name__)

AttemptKey = Tuple[str, str, str]


class PermitBorrowClient:
    """
    Orchestrates permit-backed borrows against one token and one library.

    Args:
        token: Permit token reader (EIP-712 verifying contract).
        library: Library contract; its address is the permit spender.
        agent: Signing agent holding the borrower's key.
        validity_window: Seconds from now until the permit deadline.
        clock: Returns the current unix time; replaceable in tests.
        event_bus: Pre-built bus, for callers that register their own handlers.

    Example:
        client = PermitBorrowClient(token, library, agent)
        client.hook(MessageComposedEvent, show_signing_prompt)
        result = await client.borrow("Dune", 10**17)
    """

    def __init__(
        self,
        token: PermitTokenReader,
        library: LibraryContract,
        agent: SigningAgent,
        *,
        validity_window: int = DEFAULT_PERMIT_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.time,
        event_bus: Optional[EventBus] = None,
    ):
        if validity_window <= 0:
            raise ValueError("validity_window must be positive")
        self._deps = Dependencies(
            token=token,
            library=library,
            agent=agent,
            validity_window=validity_window,
            clock=clock,
        )
        self._event_bus = event_bus or setup_event_bus()
        self._in_flight: Dict[AttemptKey, AuthorizationAttempt] = {}

    @classmethod
    def from_config(cls, config: LibraryConfig, agent: Optional[SigningAgent] = None) -> "PermitBorrowClient":
        """
        Build a web3-backed client from ``LibraryConfig``.

        Without an explicit ``agent`` the configured private key signs permits.

        Raises:
            ConfigurationError: If no private key is configured.
        """
        if not config.private_key:
            raise ConfigurationError("EVM_PRIVATE_KEY is required to send library transactions")
        w3 = create_async_web3(config.rpc_url, config.request_timeout)
        return cls(
            ERC20PermitToken(w3, config.token_address),
            BookLibraryAdapter.from_config(config, w3),
            agent or LocalAccountAgent(config.private_key),
            validity_window=config.permit_validity_seconds,
        )

    @property
    def library(self) -> LibraryContract:
        return self._deps.library

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """Observe a stage event; hooks run before the stage handler."""
        self._event_bus.hook(event_class, hook_func)

    def state(self, owner: str, title: str, spender: Optional[str] = None) -> AuthorizationState:
        """Current state of the attempt for (owner, spender, title); ``IDLE`` when none is running."""
        key = self._key(owner, spender or self._deps.library.address, title)
        attempt = self._in_flight.get(key)
        return attempt.state if attempt else AuthorizationState.IDLE

    async def borrow(self, title: str, value: int) -> BorrowResult:
        """
        Sign a permit for ``value`` and borrow ``title`` with it.

        Returns:
            ``BorrowResult`` with the redeemed permit and the transaction confirmation.

        Raises:
            AuthorizationError: The subclass for the failed stage, e.g.
                ``SignatureRejectedError`` or ``ContractRevertedError``.
            InvalidPermitParametersError: ``title`` is not a non-empty string or
                ``value`` is not an int; raised before any network call.
            AuthorizationInProgressError: An attempt for the same title is already running.
            BlockchainInteractionError: The borrow transaction could not be sent or confirmed.
        """
        spender = self._deps.library.address
        request = self._build_request(title, value, spender)

        try:
            owner = await self._deps.agent.get_address()
        except Exception as e:
            raise AgentUnavailableError(f"Cannot resolve signer address: {e}") from e

        key = self._key(owner, spender, title)
        if key in self._in_flight:
            raise AuthorizationInProgressError(f"A borrow of {title!r} is already being authorized")

        attempt = AuthorizationAttempt(owner, spender, title)
        self._in_flight[key] = attempt
        try:
            return await self._run(attempt, request)
        except BaseException:
            if not attempt.is_terminal:
                attempt.advance(AuthorizationState.FAILED)
            raise
        finally:
            del self._in_flight[key]

    async def _run(self, attempt: AuthorizationAttempt, request: BorrowRequest) -> BorrowResult:
        chain = EventChain(self._event_bus, self._deps)
        initial_event = BorrowRequestedEvent(request=request, owner=attempt.owner)
        attempt.advance(initial_event.state)

        outcome: Optional[BaseEvent] = None
        async with aclosing(chain.execute(initial_event)) as events:
            async for event in events:
                attempt.advance(event.state)
                if isinstance(event, (BorrowSubmittedEvent, AuthorizationFailedEvent)):
                    outcome = event

        if isinstance(outcome, AuthorizationFailedEvent):
            error = outcome.error
            logger.warning(
                "Borrow of %r failed while %s: %s (%s)",
                request.title, outcome.failed_state.name, error.kind, error.reason,
            )
            raise error

        if not isinstance(outcome, BorrowSubmittedEvent):
            raise BookPermitError(f"Borrow flow for {request.title!r} ended without a result")

        logger.info("Borrowed %r in transaction %s", request.title, outcome.confirmation.tx_hash)
        return BorrowResult(
            title=request.title,
            authorization=outcome.authorization,
            confirmation=outcome.confirmation,
        )

    @staticmethod
    def _build_request(title: str, value: int, spender: str) -> BorrowRequest:
        try:
            request = BorrowRequest(title=title, value=value, spender=spender)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise InvalidPermitParametersError(f"Invalid borrow request: {details}") from e
        if not request.title:
            raise InvalidPermitParametersError("No title provided")
        return request

    @staticmethod
    def _key(owner: str, spender: str, title: str) -> AttemptKey:
        return owner.lower(), spender.lower(), title
