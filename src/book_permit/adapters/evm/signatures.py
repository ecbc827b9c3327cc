"""
EVM Permit Signing Utilities

Client-side construction and handling of EIP-2612 permit signatures. All
cryptographic operations run in-process through ``eth_account``; no RPC
calls are made here.

Exported helpers
----------------
compose_permit_message
    Validate the permit parameters and wrap them with a domain into a
    ``PermitTypedData`` envelope. Pure.

request_permit_signature
    Hand the typed data to an injected ``SigningAgent`` and wait for the
    raw signature. This is the only place the permit flow suspends on a
    human.

decompose_signature
    Split a raw 65-byte ``r || s || v`` signature into an
    ``EVMECDSASignature`` and check its structural shape.

sign_permit
    Sign a ``PermitTypedData`` with a private key and return the decomposed
    signature. Convenience for scripts and tests.

LocalAccountAgent
    ``SigningAgent`` backed by an ``eth_account`` private key, with an
    optional approval callback standing in for operator consent.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from eth_account import Account
from eth_utils import decode_hex, is_address, to_checksum_address

from ..bases import RawSignature, SigningAgent
from ...engine.exceptions import (
    AgentUnavailableError,
    InvalidPermitParametersError,
    MalformedSignatureError,
    SignatureRejectedError,
)
from .constants import MAX_UINT256, SECP256K1_N, ZERO_ADDRESS
from .schemas import EVMECDSASignature
from .standards import EIP712Domain, PermitMessage, PermitTypedData

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 65

ApprovalCallback = Callable[[Dict[str, Any]], Union[bool, Awaitable[bool]]]


# ---------------------------------------------------------------------------
# Message composer
# ---------------------------------------------------------------------------

def _checked_address(field_name: str, value: Any) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise InvalidPermitParametersError(f"{field_name} is not a valid address: {value!r}")
    checksummed = to_checksum_address(value)
    if checksummed == ZERO_ADDRESS:
        raise InvalidPermitParametersError(f"{field_name} must not be the zero address")
    return checksummed


def _checked_uint(field_name: str, value: Any, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPermitParametersError(f"{field_name} must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise InvalidPermitParametersError(f"{field_name} must be >= {minimum}, got {value}")
    if value > MAX_UINT256:
        raise InvalidPermitParametersError(f"{field_name} does not fit in uint256")
    return value


def compose_permit_message(
    domain: EIP712Domain,
    *,
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
) -> PermitTypedData:
    """
    Build the EIP-712 typed data for a permit.

    Args:
        domain:   Domain from ``build_permit_domain``.
        owner:    Borrower's address (the signer).
        spender:  Library contract address.
        value:    Deposit in the token's smallest unit. Must be positive.
        nonce:    Owner's nonce, fetched for this attempt.
        deadline: Unix timestamp after which the permit is void.

    Returns:
        ``PermitTypedData`` with checksummed addresses.

    Raises:
        InvalidPermitParametersError: If an address is malformed or zero,
            ``value`` is not in ``(0, 2**256)``, or ``nonce``/``deadline``
            is negative.

    Example::

        typed_data = compose_permit_message(
            domain,
            owner="0xBorrower",
            spender="0xLibrary",
            value=10**17,
            nonce=3,
            deadline=1_700_003_600,
        )
        payload = typed_data.to_dict()
    """
    message = PermitMessage(
        owner=_checked_address("owner", owner),
        spender=_checked_address("spender", spender),
        value=_checked_uint("value", value, minimum=1),
        nonce=_checked_uint("nonce", nonce, minimum=0),
        deadline=_checked_uint("deadline", deadline, minimum=0),
    )
    return PermitTypedData(domain=domain, message=message)


# ---------------------------------------------------------------------------
# Signature requester
# ---------------------------------------------------------------------------

async def request_permit_signature(agent: SigningAgent, typed_data: PermitTypedData) -> RawSignature:
    """
    Ask the signing agent to sign ``typed_data`` and wait for the answer.

    The wait is unbounded; a human may take as long as they need. There is no
    retry: a rejected or failed request ends the attempt together with its
    nonce.

    Raises:
        SignatureRejectedError: The operator declined (passed through).
        AgentUnavailableError: The agent raised anything else or returned nothing.
    """
    try:
        raw = await agent.sign_typed_data(
            typed_data.domain.to_dict(),
            typed_data.message_types(),
            typed_data.message.to_dict(),
        )
    except SignatureRejectedError:
        raise
    except Exception as e:
        raise AgentUnavailableError(f"Signing agent failed: {e}") from e

    if raw is None or (isinstance(raw, (bytes, str)) and len(raw) == 0):
        raise AgentUnavailableError("Signing agent returned no signature")
    return raw


# ---------------------------------------------------------------------------
# Signature decomposer
# ---------------------------------------------------------------------------

def _signature_bytes(raw: RawSignature) -> bytes:
    if isinstance(raw, bool):
        raise MalformedSignatureError("Signature must be bytes, hex string or integer")
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    if isinstance(raw, str):
        try:
            return decode_hex(raw)
        except ValueError as e:
            raise MalformedSignatureError(f"Signature is not valid hex: {e}") from e
    if isinstance(raw, int):
        try:
            return raw.to_bytes(SIGNATURE_LENGTH, "big")
        except OverflowError as e:
            raise MalformedSignatureError("Integer signature does not fit in 65 bytes") from e
    raise MalformedSignatureError(f"Unsupported signature type: {type(raw).__name__}")


def decompose_signature(raw: RawSignature) -> EVMECDSASignature:
    """
    Split a raw ``r || s || v`` signature into (v, r, s).

    Wallets return ``v`` either as 27/28 or as the bare recovery id 0/1; the
    latter is normalised to 27/28.

    Args:
        raw: 65 bytes, a hex string of 65 bytes (``0x`` optional), or the
            big-endian integer encoding of those bytes.

    Returns:
        ``EVMECDSASignature`` with 0x-prefixed 32-byte ``r`` and ``s``.

    Raises:
        MalformedSignatureError: Wrong length, illegal ``v``, or ``r``/``s``
            outside ``[1, n)`` of secp256k1.
    """
    sig = _signature_bytes(raw)
    if len(sig) != SIGNATURE_LENGTH:
        raise MalformedSignatureError(f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(sig)}")

    r = int.from_bytes(sig[0:32], "big")
    s = int.from_bytes(sig[32:64], "big")
    v = sig[64]

    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        raise MalformedSignatureError(f"Invalid recovery id v={v}")

    for name, component in (("r", r), ("s", s)):
        if not 0 < component < SECP256K1_N:
            raise MalformedSignatureError(f"Signature component {name} is out of range")

    return EVMECDSASignature(v=v, r="0x" + sig[0:32].hex(), s="0x" + sig[32:64].hex())


# ---------------------------------------------------------------------------
# Local signing
# ---------------------------------------------------------------------------

def sign_permit(private_key: str, typed_data: PermitTypedData) -> EVMECDSASignature:
    """
    Sign a permit locally and return the decomposed signature.

    Example::

        signature = sign_permit("0xYOUR_PRIVATE_KEY", typed_data)
        signature.to_vrs()
    """
    signed = Account.sign_typed_data(private_key, full_message=typed_data.to_dict())
    return decompose_signature(bytes(signed.signature))


def _domain_type(domain: Dict[str, Any]) -> list:
    field_types = {
        "name": "string",
        "version": "string",
        "chainId": "uint256",
        "verifyingContract": "address",
        "salt": "bytes32",
    }
    return [{"name": key, "type": field_types[key]} for key in field_types if key in domain]


class LocalAccountAgent(SigningAgent):
    """
    Signing agent holding an ``eth_account`` key in process.

    ``approve`` receives the full typed-data payload and returns (or
    resolves to) ``True`` to sign or ``False`` to decline. Without a
    callback every request is signed.

    Example:
        agent = LocalAccountAgent(private_key, approve=lambda payload: True)
        raw = await agent.sign_typed_data(domain, types, message)
    """

    def __init__(self, private_key: str, approve: Optional[ApprovalCallback] = None):
        self._account = Account.from_key(private_key)
        self._approve = approve

    async def get_address(self) -> str:
        return self._account.address

    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, Any],
        message: Dict[str, Any],
    ) -> bytes:
        primary_type = next(name for name in types if name != "EIP712Domain")
        full_message = {
            "types": {"EIP712Domain": _domain_type(domain), **types},
            "primaryType": primary_type,
            "domain": domain,
            "message": message,
        }

        if self._approve is not None:
            decision = self._approve(full_message)
            if inspect.isawaitable(decision):
                decision = await decision
            if not decision:
                raise SignatureRejectedError("User declined to sign the permit")

        signed = self._account.sign_typed_data(full_message=full_message)
        return bytes(signed.signature)
