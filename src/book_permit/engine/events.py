"""
Event-driven borrow authorization with typed events and clear data flow.

Each stage event carries everything the next stage needs, handlers return
the next event, and collaborators are injected separately from business
data. ``state`` on an event names the attempt state entered when that event
is dispatched.
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Awaitable, Callable, ClassVar, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ..adapters.bases import LibraryContract, PermitTokenReader, RawSignature, SigningAgent
from ..adapters.evm.constants import DEFAULT_PERMIT_VALIDITY_SECONDS
from ..adapters.evm.schemas import BorrowRequest, EVMTransactionConfirmation, PermitAuthorization
from ..adapters.evm.standards import EIP712Domain, PermitTypedData
from .exceptions import AuthorizationError
from .states import AuthorizationState

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    state: ClassVar[AuthorizationState]

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


# ==================== Stage Events ====================

class BorrowRequestedEvent(BaseModel, BaseEvent):
    """External trigger: the owner asks to borrow ``request.title``."""
    state: ClassVar[AuthorizationState] = AuthorizationState.BUILDING_DOMAIN

    request: BorrowRequest
    owner: str

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"BorrowRequestedEvent(title={self.request.title!r}, value={self.request.value})"


class DomainBuiltEvent(BaseModel, BaseEvent):
    """Token domain is known; the nonce comes next."""
    state: ClassVar[AuthorizationState] = AuthorizationState.FETCHING_NONCE

    request: BorrowRequest
    owner: str
    domain: EIP712Domain

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"DomainBuiltEvent(name={self.domain.name!r})"


class NonceFetchedEvent(BaseModel, BaseEvent):
    state: ClassVar[AuthorizationState] = AuthorizationState.COMPOSING_MESSAGE

    request: BorrowRequest
    owner: str
    domain: EIP712Domain
    nonce: int

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"NonceFetchedEvent(nonce={self.nonce})"


class MessageComposedEvent(BaseModel, BaseEvent):
    """Typed data is ready; dispatching it waits on the signing agent."""
    state: ClassVar[AuthorizationState] = AuthorizationState.AWAITING_SIGNATURE

    request: BorrowRequest
    typed_data: PermitTypedData

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"MessageComposedEvent(deadline={self.typed_data.message.deadline})"


class SignatureReceivedEvent(BaseModel, BaseEvent):
    state: ClassVar[AuthorizationState] = AuthorizationState.DECOMPOSING

    request: BorrowRequest
    typed_data: PermitTypedData
    raw_signature: Any

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return "SignatureReceivedEvent(raw_signature=***)"


class AuthorizationReadyEvent(BaseModel, BaseEvent):
    """Signed permit paired with the borrow request, ready for submission."""
    state: ClassVar[AuthorizationState] = AuthorizationState.SUBMITTING

    request: BorrowRequest
    authorization: PermitAuthorization

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"AuthorizationReadyEvent(nonce={self.authorization.nonce}, deadline={self.authorization.deadline})"


# ==================== Result Events ====================

class BorrowSubmittedEvent(BaseModel, BaseEvent):
    """Result: the library accepted the permit and recorded the loan."""
    state: ClassVar[AuthorizationState] = AuthorizationState.DONE

    request: BorrowRequest
    authorization: PermitAuthorization
    confirmation: EVMTransactionConfirmation

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"BorrowSubmittedEvent(tx_hash={self.confirmation.tx_hash})"


class AuthorizationFailedEvent(BaseModel, BaseEvent):
    """Result: a stage failed and the attempt is over."""
    state: ClassVar[AuthorizationState] = AuthorizationState.FAILED

    error: AuthorizationError
    failed_state: AuthorizationState

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"AuthorizationFailedEvent(kind={self.error.kind!r}, failed_state={self.failed_state.name})"


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for injected collaborators (read-only)."""
    token: PermitTokenReader
    library: LibraryContract
    agent: SigningAgent
    validity_window: int = DEFAULT_PERMIT_VALIDITY_SECONDS
    clock: Callable[[], float] = field(default=time.time)


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        self._subscribers: Dict[type, list[EventHandlerFunc]] = {}
        self._hooks: Dict[type, list[EventHookFunc]] = {}

    def subscribe(self, event_class: type[BaseEvent], handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")
        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks run before subscribers when the event is dispatched.

        Raises:
            TypeError: If hook_func is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")
        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.
        Hooks run first, then all subscribers run concurrently.

        Subscriber tasks still running when the dispatch is cancelled or
        closed are cancelled and awaited before it returns.

        Yields:
            Results from subscribers as they complete. Nothing when no subscriber is registered.
        """
        hooks = self._hooks.get(type(event), [])
        await asyncio.gather(*(hook(event, deps) for hook in hooks))

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        tasks = [asyncio.ensure_future(handler(event, deps)) for handler in handlers]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
