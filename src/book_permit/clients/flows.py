"""
Built-in event handlers for the permit-backed borrow workflow.

Implements the authorization flow: domain → nonce → message → signature →
decomposition → borrow. Each handler turns an ``AuthorizationError`` from its
stage into an ``AuthorizationFailedEvent``; anything else propagates.
"""

from ..engine.events import (
    EventBus,
    Dependencies,
    BaseEvent,
    BorrowRequestedEvent,
    DomainBuiltEvent,
    NonceFetchedEvent,
    MessageComposedEvent,
    SignatureReceivedEvent,
    AuthorizationReadyEvent,
    BorrowSubmittedEvent,
    AuthorizationFailedEvent,
)
from ..engine.exceptions import (
    AuthorizationError,
    ContractRevertedError,
    DeadlineExpiredError,
    InvalidPermitParametersError,
)
from ..adapters.evm.schemas import PermitAuthorization
from ..adapters.evm.signatures import compose_permit_message, decompose_signature, request_permit_signature
from ..adapters.evm.tokens import build_permit_domain, fetch_permit_nonce


def _failed(event: BaseEvent, error: AuthorizationError) -> AuthorizationFailedEvent:
    return AuthorizationFailedEvent(error=error, failed_state=type(event).state)


# ==================== Event Handlers ====================

async def handle_borrow_requested(
    event: BorrowRequestedEvent,
    deps: Dependencies
) -> DomainBuiltEvent | AuthorizationFailedEvent:
    """Reject an empty title, then read the token name and build the signing domain."""
    if not event.request.title:
        return _failed(event, InvalidPermitParametersError("No title provided"))

    try:
        domain = await build_permit_domain(deps.token)
    except AuthorizationError as e:
        return _failed(event, e)
    return DomainBuiltEvent(request=event.request, owner=event.owner, domain=domain)


async def handle_domain_built(
    event: DomainBuiltEvent,
    deps: Dependencies
) -> NonceFetchedEvent | AuthorizationFailedEvent:
    """Fetch a fresh nonce for the owner."""
    try:
        nonce = await fetch_permit_nonce(deps.token, event.owner)
    except AuthorizationError as e:
        return _failed(event, e)
    return NonceFetchedEvent(request=event.request, owner=event.owner, domain=event.domain, nonce=nonce)


async def handle_nonce_fetched(
    event: NonceFetchedEvent,
    deps: Dependencies
) -> MessageComposedEvent | AuthorizationFailedEvent:
    """Compose the permit with a deadline ``validity_window`` seconds from now."""
    deadline = int(deps.clock()) + deps.validity_window
    try:
        typed_data = compose_permit_message(
            event.domain,
            owner=event.owner,
            spender=event.request.spender,
            value=event.request.value,
            nonce=event.nonce,
            deadline=deadline,
        )
    except AuthorizationError as e:
        return _failed(event, e)
    return MessageComposedEvent(request=event.request, typed_data=typed_data)


async def handle_message_composed(
    event: MessageComposedEvent,
    deps: Dependencies
) -> SignatureReceivedEvent | AuthorizationFailedEvent:
    """Wait for the signing agent."""
    try:
        raw_signature = await request_permit_signature(deps.agent, event.typed_data)
    except AuthorizationError as e:
        return _failed(event, e)
    return SignatureReceivedEvent(request=event.request, typed_data=event.typed_data, raw_signature=raw_signature)


async def handle_signature_received(
    event: SignatureReceivedEvent,
    deps: Dependencies
) -> AuthorizationReadyEvent | AuthorizationFailedEvent:
    """Decompose the signature and pair it with the permit fields."""
    try:
        signature = decompose_signature(event.raw_signature)
    except AuthorizationError as e:
        return _failed(event, e)

    message = event.typed_data.message
    authorization = PermitAuthorization(
        owner=message.owner,
        spender=message.spender,
        token=event.typed_data.domain.verifyingContract,
        value=message.value,
        nonce=message.nonce,
        deadline=message.deadline,
        signature=signature,
    )
    return AuthorizationReadyEvent(request=event.request, authorization=authorization)


async def handle_authorization_ready(
    event: AuthorizationReadyEvent,
    deps: Dependencies
) -> BorrowSubmittedEvent | AuthorizationFailedEvent:
    """Submit ``borrow`` unless the permit has already expired."""
    authorization = event.authorization
    now = int(deps.clock())
    if authorization.is_expired(now):
        return _failed(event, DeadlineExpiredError(
            f"Permit deadline {authorization.deadline} passed before submission (now {now})",
            deadline=authorization.deadline,
            current_time=now,
        ))

    signature = authorization.signature
    try:
        confirmation = await deps.library.borrow(
            event.request.title,
            authorization.value,
            authorization.deadline,
            signature.v,
            signature.r_bytes(),
            signature.s_bytes(),
        )
    except ContractRevertedError as e:
        now = int(deps.clock())
        if authorization.is_expired(now):
            return _failed(event, DeadlineExpiredError(e.reason, deadline=authorization.deadline, current_time=now))
        return _failed(event, e)
    except AuthorizationError as e:
        return _failed(event, e)

    return BorrowSubmittedEvent(request=event.request, authorization=authorization, confirmation=confirmation)


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with the built-in borrow handlers."""
    event_bus = EventBus()

    event_bus.subscribe(BorrowRequestedEvent, handle_borrow_requested)
    event_bus.subscribe(DomainBuiltEvent, handle_domain_built)
    event_bus.subscribe(NonceFetchedEvent, handle_nonce_fetched)
    event_bus.subscribe(MessageComposedEvent, handle_message_composed)
    event_bus.subscribe(SignatureReceivedEvent, handle_signature_received)
    event_bus.subscribe(AuthorizationReadyEvent, handle_authorization_ready)

    return event_bus
