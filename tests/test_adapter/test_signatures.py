"""
Permit Signature Test Suite

Covers the pure signing helpers:
- Message composition and parameter validation
- Signature decomposition (encodings, v normalisation, range checks)
- Signature requests against a signing agent
- Local signing, recovery and domain binding

Usage:
    pytest tests/test_adapter/test_signatures.py -v
"""

import pytest

from test_mocks import (
    MOCK_OWNER_PRIVATE_KEY,
    MOCK_OWNER_ADDRESS,
    MOCK_OTHER_PRIVATE_KEY,
    MOCK_OTHER_ADDRESS,
    MOCK_LIBRARY_ADDRESS,
    MOCK_OTHER_TOKEN_ADDRESS,
    MOCK_DEPOSIT_VALUE,
    MOCK_NOW,
    ScriptedAgent,
    mock_domain,
    mock_typed_data,
    raw_signature,
)

from book_permit.adapters.evm.constants import MAX_UINT256, SECP256K1_N, ZERO_ADDRESS
from book_permit.adapters.evm.signatures import (
    LocalAccountAgent,
    compose_permit_message,
    decompose_signature,
    request_permit_signature,
    sign_permit,
)
from book_permit.adapters.evm.standards import PermitTypedData
from book_permit.adapters.evm.verifies import recover_permit_signer, verify_permit_signature
from book_permit.engine.exceptions import (
    AgentUnavailableError,
    InvalidPermitParametersError,
    MalformedSignatureError,
    SignatureRejectedError,
)
from book_permit.schemas.bases import VerificationStatus


# ========================================================================
# Message Composer
# ========================================================================

class TestComposePermitMessage:
    """Test permit message composition."""

    def _compose(self, **overrides):
        params = dict(
            owner=MOCK_OWNER_ADDRESS,
            spender=MOCK_LIBRARY_ADDRESS,
            value=MOCK_DEPOSIT_VALUE,
            nonce=3,
            deadline=MOCK_NOW + 3600,
        )
        params.update(overrides)
        return compose_permit_message(mock_domain(), **params)

    def test_compose_builds_typed_data(self):
        typed_data = self._compose()

        payload = typed_data.to_dict()
        assert payload["primaryType"] == "Permit"
        assert payload["domain"] == {
            "name": "Library Deposit Token",
            "version": "1",
            "verifyingContract": mock_domain().verifyingContract,
        }
        assert payload["message"] == {
            "owner": MOCK_OWNER_ADDRESS,
            "spender": MOCK_LIBRARY_ADDRESS,
            "value": MOCK_DEPOSIT_VALUE,
            "nonce": 3,
            "deadline": MOCK_NOW + 3600,
        }
        assert [f["name"] for f in payload["types"]["EIP712Domain"]] == ["name", "version", "verifyingContract"]
        assert "chainId" not in payload["domain"]

    def test_compose_checksums_addresses(self):
        typed_data = self._compose(owner=MOCK_OWNER_ADDRESS.lower(), spender=MOCK_LIBRARY_ADDRESS.lower())
        assert typed_data.message.owner == MOCK_OWNER_ADDRESS
        assert typed_data.message.spender == MOCK_LIBRARY_ADDRESS

    @pytest.mark.parametrize("overrides", [
        {"owner": "not-an-address"},
        {"owner": ZERO_ADDRESS},
        {"spender": ZERO_ADDRESS},
        {"spender": "0x1234"},
        {"value": 0},
        {"value": -1},
        {"value": MAX_UINT256 + 1},
        {"value": True},
        {"nonce": -1},
        {"deadline": -1},
    ])
    def test_compose_rejects_invalid_parameters(self, overrides):
        with pytest.raises(InvalidPermitParametersError) as exc_info:
            self._compose(**overrides)
        assert exc_info.value.kind == "InvalidPermitParameters"

    def test_compose_accepts_max_uint256_value(self):
        assert self._compose(value=MAX_UINT256).message.value == MAX_UINT256


# ========================================================================
# Signature Decomposer
# ========================================================================

class TestDecomposeSignature:
    """Test raw signature decomposition."""

    def test_decompose_bytes(self):
        signature = decompose_signature(raw_signature(r=5, s=7, v=28))
        assert signature.v == 28
        assert signature.r == "0x" + "00" * 31 + "05"
        assert signature.s == "0x" + "00" * 31 + "07"
        assert signature.to_vrs() == (28, 5, 7)

    @pytest.mark.parametrize("v, expected", [(0, 27), (1, 28), (27, 27), (28, 28)])
    def test_decompose_normalises_recovery_id(self, v, expected):
        assert decompose_signature(raw_signature(v=v)).v == expected

    def test_decompose_hex_with_and_without_prefix(self):
        raw = raw_signature(r=11, s=12, v=27)
        assert decompose_signature("0x" + raw.hex()).to_vrs() == (27, 11, 12)
        assert decompose_signature(raw.hex()).to_vrs() == (27, 11, 12)

    def test_decompose_integer_encoding(self):
        raw = raw_signature(r=2**255, s=9, v=1)
        assert decompose_signature(int.from_bytes(raw, "big")).to_vrs() == (28, 2**255, 9)

    def test_decompose_integer_with_leading_zero_bytes(self):
        raw = raw_signature(r=1, s=2, v=27)
        assert decompose_signature(int.from_bytes(raw, "big")).to_vrs() == (27, 1, 2)

    @pytest.mark.parametrize("raw", [
        b"\x01" * 64,
        b"\x01" * 66,
        "0x" + "01" * 64,
        "0xzz" + "01" * 64,
        2 ** (65 * 8),
        -1,
        True,
        1.5,
        None,
    ])
    def test_decompose_rejects_malformed_input(self, raw):
        with pytest.raises(MalformedSignatureError):
            decompose_signature(raw)

    @pytest.mark.parametrize("v", [2, 26, 29, 255])
    def test_decompose_rejects_illegal_recovery_id(self, v):
        with pytest.raises(MalformedSignatureError, match="recovery id"):
            decompose_signature(raw_signature(v=v))

    @pytest.mark.parametrize("r, s", [(0, 1), (1, 0), (SECP256K1_N, 1), (1, SECP256K1_N), (2**256 - 1, 1)])
    def test_decompose_rejects_out_of_range_components(self, r, s):
        with pytest.raises(MalformedSignatureError, match="out of range"):
            decompose_signature(raw_signature(r=r, s=s))

    def test_decomposed_signature_repacks(self):
        raw = raw_signature(r=3, s=4, v=28)
        assert decompose_signature(raw).to_packed_hex() == "0x" + raw.hex()


# ========================================================================
# Signing, Recovery and Domain Binding
# ========================================================================

class TestLocalSigning:
    """Test local signing and recovery."""

    def test_sign_permit_recovers_owner(self):
        typed_data = mock_typed_data(nonce=3)
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        assert signature.validate_format()
        assert recover_permit_signer(typed_data, signature) == MOCK_OWNER_ADDRESS

    def test_signature_is_bound_to_token_name(self):
        typed_data = mock_typed_data()
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        other = PermitTypedData(domain=mock_domain(name="Other Token"), message=typed_data.message)
        assert recover_permit_signer(other, signature) != MOCK_OWNER_ADDRESS

    def test_signature_is_bound_to_verifying_contract(self):
        typed_data = mock_typed_data()
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        other = PermitTypedData(domain=mock_domain(token=MOCK_OTHER_TOKEN_ADDRESS), message=typed_data.message)
        assert recover_permit_signer(other, signature) != MOCK_OWNER_ADDRESS

    def test_signature_is_bound_to_nonce(self):
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, mock_typed_data(nonce=3))
        assert recover_permit_signer(mock_typed_data(nonce=4), signature) != MOCK_OWNER_ADDRESS

    def test_verify_permit_signature_success(self):
        typed_data = mock_typed_data()
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        result = verify_permit_signature(typed_data, signature, current_time=MOCK_NOW)

        assert result.is_success()
        assert result.recovered == MOCK_OWNER_ADDRESS
        assert result.authorized_amount == MOCK_DEPOSIT_VALUE

    def test_verify_permit_signature_wrong_signer(self):
        typed_data = mock_typed_data()
        signature = sign_permit(MOCK_OTHER_PRIVATE_KEY, typed_data)

        result = verify_permit_signature(typed_data, signature, current_time=MOCK_NOW)

        assert not result.is_valid
        assert result.status == VerificationStatus.INVALID_SIGNATURE
        assert result.recovered == MOCK_OTHER_ADDRESS
        assert "does not match" in result.get_error_message()

    def test_verify_permit_signature_expired(self):
        typed_data = mock_typed_data(deadline=MOCK_NOW - 1)
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        result = verify_permit_signature(typed_data, signature, current_time=MOCK_NOW)

        assert result.status == VerificationStatus.EXPIRED

    def test_deadline_equal_to_now_is_still_valid(self):
        typed_data = mock_typed_data(deadline=MOCK_NOW)
        signature = sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data)

        assert verify_permit_signature(typed_data, signature, current_time=MOCK_NOW).is_success()


class TestLocalAccountAgent:
    """Test the in-process signing agent."""

    @pytest.mark.asyncio
    async def test_agent_signs_like_sign_permit(self):
        typed_data = mock_typed_data(nonce=7)
        agent = LocalAccountAgent(MOCK_OWNER_PRIVATE_KEY)

        raw = await agent.sign_typed_data(
            typed_data.domain.to_dict(),
            typed_data.message_types(),
            typed_data.message.to_dict(),
        )

        assert await agent.get_address() == MOCK_OWNER_ADDRESS
        assert len(raw) == 65
        assert decompose_signature(raw).to_vrs() == sign_permit(MOCK_OWNER_PRIVATE_KEY, typed_data).to_vrs()

    @pytest.mark.asyncio
    async def test_agent_declines_when_approval_refused(self):
        seen = []

        def approve(payload):
            seen.append(payload)
            return False

        agent = LocalAccountAgent(MOCK_OWNER_PRIVATE_KEY, approve=approve)
        with pytest.raises(SignatureRejectedError):
            await request_permit_signature(agent, mock_typed_data())

        assert seen[0]["primaryType"] == "Permit"
        assert seen[0]["message"]["value"] == MOCK_DEPOSIT_VALUE

    @pytest.mark.asyncio
    async def test_agent_accepts_async_approval(self):
        async def approve(payload):
            return True

        agent = LocalAccountAgent(MOCK_OWNER_PRIVATE_KEY, approve=approve)
        raw = await request_permit_signature(agent, mock_typed_data())

        assert recover_permit_signer(mock_typed_data(), decompose_signature(raw)) == MOCK_OWNER_ADDRESS


# ========================================================================
# Signature Requester
# ========================================================================

class TestRequestPermitSignature:
    """Test signature requests and agent failure mapping."""

    @pytest.mark.asyncio
    async def test_request_passes_typed_data_to_agent(self):
        agent = ScriptedAgent()
        typed_data = mock_typed_data()

        await request_permit_signature(agent, typed_data)

        domain, types, message = agent.requests[0]
        assert domain == typed_data.domain.to_dict()
        assert list(types) == ["Permit"]
        assert message == typed_data.message.to_dict()

    @pytest.mark.asyncio
    async def test_rejection_passes_through(self):
        agent = ScriptedAgent(error=SignatureRejectedError("User denied message signature"))
        with pytest.raises(SignatureRejectedError, match="User denied"):
            await request_permit_signature(agent, mock_typed_data())

    @pytest.mark.asyncio
    async def test_agent_failure_becomes_agent_unavailable(self):
        agent = ScriptedAgent(error=ConnectionError("wallet disconnected"))
        with pytest.raises(AgentUnavailableError, match="wallet disconnected") as exc_info:
            await request_permit_signature(agent, mock_typed_data())
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [b"", ""])
    async def test_empty_result_becomes_agent_unavailable(self, result):
        agent = ScriptedAgent(result=result)
        with pytest.raises(AgentUnavailableError):
            await request_permit_signature(agent, mock_typed_data())
