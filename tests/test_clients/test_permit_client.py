"""
Permit Borrow Client Test Suite

End-to-end tests of the authorization orchestrator against in-memory token
and library contracts that verify signatures and consume nonces.

Test Structure:
    - Happy path (the "Dune" borrow) and nonce freshness
    - Replay and revert handling
    - Signing agent outcomes (rejection, failure, malformed answers)
    - Deadline enforcement
    - In-flight guard and cancellation
"""

import asyncio

import pytest

from test_mocks import (
    MOCK_DEPOSIT_VALUE,
    MOCK_LIBRARY_ADDRESS,
    MOCK_NOW,
    MOCK_OTHER_ADDRESS,
    MOCK_OWNER_ADDRESS,
    MOCK_OWNER_PRIVATE_KEY,
    FakeClock,
    FakeLibrary,
    FakePermitToken,
    ScriptedAgent,
    raw_signature,
)

from book_permit.adapters.evm.signatures import LocalAccountAgent, compose_permit_message
from book_permit.adapters.evm.verifies import verify_permit_signature
from book_permit.clients.permit_client import PermitBorrowClient
from book_permit.engine.events import (
    AuthorizationReadyEvent,
    BorrowRequestedEvent,
    BorrowSubmittedEvent,
    DomainBuiltEvent,
    MessageComposedEvent,
    NonceFetchedEvent,
    SignatureReceivedEvent,
)
from book_permit.engine.exceptions import (
    AgentUnavailableError,
    AuthorizationInProgressError,
    ContractRevertedError,
    DeadlineExpiredError,
    InvalidPermitParametersError,
    MalformedSignatureError,
    MetadataUnavailableError,
    NonceUnavailableError,
    SignatureRejectedError,
)
from book_permit.engine.states import AuthorizationState


# ========================================================================
# Test Fixtures
# ========================================================================

@pytest.fixture
def clock():
    return FakeClock(MOCK_NOW)


@pytest.fixture
def token():
    token = FakePermitToken()
    token.set_nonce(MOCK_OWNER_ADDRESS, 3)
    return token


@pytest.fixture
def library(token, clock):
    return FakeLibrary(token, clock)


@pytest.fixture
def agent():
    return ScriptedAgent(MOCK_OWNER_PRIVATE_KEY)


@pytest.fixture
def client(token, library, agent, clock):
    return PermitBorrowClient(token, library, agent, validity_window=3600, clock=clock)


async def wait_for_state(client, title, state, attempts=200):
    for _ in range(attempts):
        if client.state(MOCK_OWNER_ADDRESS, title) == state:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{title!r} never reached {state.name}")


async def wait_for_signing_request(agent, attempts=200):
    for _ in range(attempts):
        if agent.requests:
            return
        await asyncio.sleep(0)
    raise AssertionError("signing agent was never asked")


# ========================================================================
# Happy Path
# ========================================================================

class TestBorrowSuccess:
    """Test successful permit-backed borrows."""

    @pytest.mark.asyncio
    async def test_borrow_dune(self, client, token, library, clock):
        """Owner with nonce 3 borrows "Dune" for 0.1 token at T; deadline is T + 3600."""
        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        authorization = result.authorization
        assert authorization.owner == MOCK_OWNER_ADDRESS
        assert authorization.spender == MOCK_LIBRARY_ADDRESS
        assert authorization.value == MOCK_DEPOSIT_VALUE
        assert authorization.nonce == 3
        assert authorization.deadline == MOCK_NOW + 3600

        call = library.borrow_calls[0]
        assert (call["title"], call["value"], call["deadline"]) == ("Dune", MOCK_DEPOSIT_VALUE, MOCK_NOW + 3600)
        assert call["v"] in (27, 28)
        assert len(call["r"]) == 32 and len(call["s"]) == 32

        assert result.title == "Dune"
        assert result.confirmation.is_success()
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 4
        assert await library.is_borrowed("Dune")
        assert client.state(MOCK_OWNER_ADDRESS, "Dune") == AuthorizationState.IDLE

    @pytest.mark.asyncio
    async def test_signature_recovers_to_owner(self, client, token, clock):
        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        authorization = result.authorization

        typed_data = compose_permit_message(
            token.domain(),
            owner=authorization.owner,
            spender=authorization.spender,
            value=authorization.value,
            nonce=authorization.nonce,
            deadline=authorization.deadline,
        )
        verification = verify_permit_signature(typed_data, authorization.signature, current_time=clock.now)
        assert verification.is_success()

    @pytest.mark.asyncio
    async def test_each_attempt_fetches_fresh_nonce(self, client, token):
        first = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        second = await client.borrow("Emma", MOCK_DEPOSIT_VALUE)

        assert first.authorization.nonce == 3
        assert second.authorization.nonce == 4
        assert token.nonce_calls == 2
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 5

    @pytest.mark.asyncio
    async def test_custom_validity_window(self, token, library, agent, clock):
        client = PermitBorrowClient(token, library, agent, validity_window=600, clock=clock)

        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert result.authorization.deadline == MOCK_NOW + 600

    def test_validity_window_must_be_positive(self, token, library, agent):
        with pytest.raises(ValueError):
            PermitBorrowClient(token, library, agent, validity_window=0)

    @pytest.mark.asyncio
    async def test_hooks_observe_every_stage_in_order(self, client):
        seen = []

        async def record(event, deps):
            seen.append(type(event).__name__)

        for event_class in (
            BorrowRequestedEvent,
            DomainBuiltEvent,
            NonceFetchedEvent,
            MessageComposedEvent,
            SignatureReceivedEvent,
            AuthorizationReadyEvent,
            BorrowSubmittedEvent,
        ):
            client.hook(event_class, record)

        await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert seen == [
            "BorrowRequestedEvent",
            "DomainBuiltEvent",
            "NonceFetchedEvent",
            "MessageComposedEvent",
            "SignatureReceivedEvent",
            "AuthorizationReadyEvent",
            "BorrowSubmittedEvent",
        ]

    def test_hook_requires_coroutine(self, client):
        with pytest.raises(TypeError):
            client.hook(BorrowSubmittedEvent, lambda event, deps: None)


# ========================================================================
# Replay and Revert Handling
# ========================================================================

class TestContractReverts:
    """Test how contract reverts surface."""

    @pytest.mark.asyncio
    async def test_replayed_permit_is_rejected_by_contract(self, client, library, token):
        await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        call = library.borrow_calls[0]

        with pytest.raises(ContractRevertedError) as exc_info:
            await library.borrow(call["title"], call["value"], call["deadline"], call["v"], call["r"], call["s"])
        assert exc_info.value.reason == "ERC20Permit: invalid signature"
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 4

    @pytest.mark.asyncio
    async def test_revert_reason_is_passed_through_verbatim(self, client, library, token):
        library.revert_reason = "Library: member suspended (code 7)"

        with pytest.raises(ContractRevertedError) as exc_info:
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert exc_info.value.reason == "Library: member suspended (code 7)"
        assert exc_info.value.kind == "ContractReverted"
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 3
        assert client.state(MOCK_OWNER_ADDRESS, "Dune") == AuthorizationState.IDLE

    @pytest.mark.asyncio
    async def test_unavailable_book_does_not_consume_nonce(self, client, token):
        with pytest.raises(ContractRevertedError, match="Book is not available"):
            await client.borrow("Solaris", MOCK_DEPOSIT_VALUE)
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 3

    @pytest.mark.asyncio
    async def test_permit_signed_by_someone_else_reverts(self, token, clock, agent):
        library = FakeLibrary(token, clock, sender=MOCK_OTHER_ADDRESS)
        client = PermitBorrowClient(token, library, agent, clock=clock)

        with pytest.raises(ContractRevertedError) as exc_info:
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert exc_info.value.reason == "ERC20Permit: invalid signature"

    @pytest.mark.asyncio
    async def test_no_automatic_resign_after_revert(self, client, library, agent):
        library.revert_reason = "ERC20Permit: invalid signature"

        with pytest.raises(ContractRevertedError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert len(agent.requests) == 1
        assert len(library.borrow_calls) == 1


# ========================================================================
# Signing Agent Outcomes
# ========================================================================

class TestSigningAgentOutcomes:
    """Test each failure path of the signature stage."""

    @pytest.mark.asyncio
    async def test_rejection_aborts_without_submission(self, token, library, clock):
        agent = LocalAccountAgent(MOCK_OWNER_PRIVATE_KEY, approve=lambda payload: False)
        client = PermitBorrowClient(token, library, agent, clock=clock)

        with pytest.raises(SignatureRejectedError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert library.borrow_calls == []
        assert token.current_nonce(MOCK_OWNER_ADDRESS) == 3
        assert client.state(MOCK_OWNER_ADDRESS, "Dune") == AuthorizationState.IDLE

    @pytest.mark.asyncio
    async def test_retry_after_rejection_refetches_nonce(self, client, agent, token):
        agent.error = SignatureRejectedError()
        with pytest.raises(SignatureRejectedError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        agent.error = None
        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert token.nonce_calls == 2
        assert result.authorization.nonce == 3

    @pytest.mark.asyncio
    async def test_agent_failure(self, client, agent, library):
        agent.error = RuntimeError("hardware wallet unplugged")

        with pytest.raises(AgentUnavailableError, match="hardware wallet unplugged"):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert library.borrow_calls == []

    @pytest.mark.asyncio
    async def test_signer_address_unavailable(self, client, agent, token):
        agent.address_error = ConnectionError("no wallet")

        with pytest.raises(AgentUnavailableError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert token.nonce_calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_signature", [
        b"\x00" * 65,
        b"\x01" * 64,
        raw_signature(v=30),
    ])
    async def test_malformed_signature_is_not_submitted(self, client, agent, library, bad_signature):
        agent.result = bad_signature

        with pytest.raises(MalformedSignatureError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert library.borrow_calls == []

    @pytest.mark.asyncio
    async def test_hex_signature_with_recovery_id_zero_is_normalised(self, client, agent, library):
        """Some wallets return v as 0/1; the borrow still goes through with v in {27, 28}."""
        original = agent.sign_typed_data

        async def sign_with_bare_recovery_id(domain, types, message):
            raw = await original(domain, types, message)
            return "0x" + (raw[:64] + bytes([raw[64] - 27])).hex()

        agent.sign_typed_data = sign_with_bare_recovery_id

        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert result.authorization.signature.v in (27, 28)
        assert library.borrow_calls[0]["v"] in (27, 28)


# ========================================================================
# Pre-signing Failures
# ========================================================================

class TestPreSigningFailures:
    """Test failures before the signing agent is asked."""

    @pytest.mark.asyncio
    async def test_metadata_unavailable(self, client, token, agent):
        token.name_error = TimeoutError("rpc timeout")

        with pytest.raises(MetadataUnavailableError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert agent.requests == []
        assert token.nonce_calls == 0

    @pytest.mark.asyncio
    async def test_nonce_unavailable(self, client, token, agent):
        token.nonce_error = ConnectionError("node unreachable")

        with pytest.raises(NonceUnavailableError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert agent.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title, value", [("", MOCK_DEPOSIT_VALUE), ("Dune", 0), ("Dune", -5)])
    async def test_invalid_parameters(self, client, agent, title, value):
        with pytest.raises(InvalidPermitParametersError):
            await client.borrow(title, value)
        assert agent.requests == []

    @pytest.mark.asyncio
    async def test_empty_title_rejected_before_any_rpc(self, client, token, agent):
        with pytest.raises(InvalidPermitParametersError, match="No title provided"):
            await client.borrow("", MOCK_DEPOSIT_VALUE)
        assert token.nonce_calls == 0
        assert client.state(MOCK_OWNER_ADDRESS, "") == AuthorizationState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title, value, field", [
        ("Emma", True, "value"),
        ("Emma", "100000000000000000", "value"),
        ("Emma", 1e17, "value"),
        ("Emma", None, "value"),
        (None, MOCK_DEPOSIT_VALUE, "title"),
        (42, MOCK_DEPOSIT_VALUE, "title"),
    ])
    async def test_inputs_are_not_coerced(self, client, token, agent, library, title, value, field):
        with pytest.raises(InvalidPermitParametersError) as exc_info:
            await client.borrow(title, value)

        assert exc_info.value.kind == "InvalidPermitParameters"
        assert f"{field}:" in exc_info.value.reason
        assert token.nonce_calls == 0
        assert agent.requests == []
        assert library.borrow_calls == []


# ========================================================================
# Deadline Enforcement
# ========================================================================

class TestDeadline:
    """Test deadline checks before and after submission."""

    @pytest.mark.asyncio
    async def test_deadline_lapses_while_user_signs(self, client, clock, library):
        async def slow_user(event, deps):
            clock.advance(3601)

        client.hook(MessageComposedEvent, slow_user)

        with pytest.raises(DeadlineExpiredError) as exc_info:
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert exc_info.value.deadline == MOCK_NOW + 3600
        assert exc_info.value.current_time == MOCK_NOW + 3601
        assert library.borrow_calls == []

    @pytest.mark.asyncio
    async def test_deadline_equal_to_now_is_submitted(self, client, clock, library):
        async def exactly_on_time(event, deps):
            clock.advance(3600)

        client.hook(MessageComposedEvent, exactly_on_time)

        await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert len(library.borrow_calls) == 1

    @pytest.mark.asyncio
    async def test_revert_after_deadline_lapse_is_deadline_expired(self, client, clock, library):
        async def mined_too_late(title, value, deadline, v, r, s):
            clock.advance(7200)
            raise ContractRevertedError("ERC20Permit: expired deadline")

        library.borrow = mined_too_late

        with pytest.raises(DeadlineExpiredError) as exc_info:
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        assert exc_info.value.reason == "ERC20Permit: expired deadline"
        assert exc_info.value.kind == "DeadlineExpired"


# ========================================================================
# In-flight Guard and Cancellation
# ========================================================================

class TestConcurrency:
    """Test the per-(owner, spender, title) guard and cancellation."""

    @pytest.mark.asyncio
    async def test_second_attempt_for_same_title_is_rejected(self, client, agent):
        agent.gate = asyncio.Event()
        first = asyncio.create_task(client.borrow("Dune", MOCK_DEPOSIT_VALUE))
        await wait_for_state(client, "Dune", AuthorizationState.AWAITING_SIGNATURE)

        with pytest.raises(AuthorizationInProgressError):
            await client.borrow("Dune", MOCK_DEPOSIT_VALUE)

        agent.gate.set()
        result = await first
        assert result.authorization.nonce == 3
        assert len(agent.requests) == 1

    @pytest.mark.asyncio
    async def test_state_while_waiting_for_signature(self, client, agent):
        agent.gate = asyncio.Event()
        task = asyncio.create_task(client.borrow("Dune", MOCK_DEPOSIT_VALUE))

        await wait_for_state(client, "Dune", AuthorizationState.AWAITING_SIGNATURE)
        assert client.state(MOCK_OWNER_ADDRESS.lower(), "Dune") == AuthorizationState.AWAITING_SIGNATURE
        assert client.state(MOCK_OWNER_ADDRESS, "Emma") == AuthorizationState.IDLE

        agent.gate.set()
        await task
        assert client.state(MOCK_OWNER_ADDRESS, "Dune") == AuthorizationState.IDLE

    @pytest.mark.asyncio
    async def test_cancellation_releases_attempt(self, client, agent, library, token):
        agent.gate = asyncio.Event()
        task = asyncio.create_task(client.borrow("Dune", MOCK_DEPOSIT_VALUE))
        await wait_for_state(client, "Dune", AuthorizationState.AWAITING_SIGNATURE)
        await wait_for_signing_request(agent)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.state(MOCK_OWNER_ADDRESS, "Dune") == AuthorizationState.IDLE
        assert library.borrow_calls == []
        assert agent.cancelled == 1

        agent.gate.set()
        result = await client.borrow("Dune", MOCK_DEPOSIT_VALUE)
        assert result.authorization.nonce == 3
        assert token.nonce_calls == 2
        assert len(agent.requests) == 2
        assert agent.cancelled == 1
        assert len(library.borrow_calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_signing_request_never_completes(self, client, agent, library):
        signed = []
        original = agent.sign_typed_data

        async def tracking_sign(domain, types, message):
            raw = await original(domain, types, message)
            signed.append(message["nonce"])
            return raw

        agent.sign_typed_data = tracking_sign
        agent.gate = asyncio.Event()
        task = asyncio.create_task(client.borrow("Dune", MOCK_DEPOSIT_VALUE))
        await wait_for_signing_request(agent)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        agent.gate.set()
        for _ in range(20):
            await asyncio.sleep(0)

        assert signed == []
        assert agent.cancelled == 1
        assert library.borrow_calls == []
