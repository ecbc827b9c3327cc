"""
EVM Adapter Schema Models

Pydantic models for permit signing and library contract calls. All classes
inherit from the base schema hierarchy in ``schemas.bases``.

Signature classes:
    - EVMECDSASignature: v/r/s components of an EIP-2612 permit signature.

Permit classes:
    - PermitAuthorization: A signed permit bundle (owner, spender, token,
      value, nonce, deadline, signature) ready for ``borrow``.

Request / record classes:
    - BorrowRequest: The user's borrow intent (title, value, spender).
    - BookRecord: Structured availability of a title in the library.

Result / confirmation classes:
    - BorrowResult: Permit and receipt of a completed borrow.
    - EVMVerificationResult: Local signature recovery outcome.
    - EVMTransactionConfirmation: Receipt summary of a library write call.
"""

from typing import Optional, Dict, Any, Literal, Tuple

from pydantic import Field

from ...schemas.bases import (
    BaseSignature,
    BasePermit,
    BaseVerificationResult,
    BaseTransactionConfirmation,
    CanonicalModel,
)


def _strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


class EVMECDSASignature(BaseSignature):
    """
    EVM ECDSA signature (v, r, s) for an EIP-2612 permit.

    Attributes:
        signature_type: Always ``"EIP2612"``.
        v: ECDSA recovery ID (27 or 28).
        r: r component, 32 bytes as a 64-char hex string (0x prefix optional).
        s: s component, 32 bytes as a 64-char hex string (0x prefix optional).

    Example::

        sig = EVMECDSASignature(v=27, r="0x" + "a" * 64, s="0x" + "b" * 64)
        sig.validate_format()
    """

    signature_type: Literal["EIP2612"] = Field(default="EIP2612", description="Signing standard")
    v: int = Field(..., ge=27, le=28, description="ECDSA recovery ID (27 or 28)")
    r: str = Field(..., description="Signature r component (32 bytes, 64-char hex, 0x prefix optional)")
    s: str = Field(..., description="Signature s component (32 bytes, 64-char hex, 0x prefix optional)")

    def validate_format(self) -> bool:
        """
        Validate v/r/s components.

        Returns:
            True when all components pass.

        Raises:
            ValueError: Descriptive message on the first failed check.
        """
        if self.v not in (27, 28):
            raise ValueError(f"Invalid recovery ID: {self.v}. Must be 27 or 28")

        for name, val in [("r", self.r), ("s", self.s)]:
            hex_str = _strip_hex_prefix(val)
            if len(hex_str) != 64:
                raise ValueError(f"Invalid {name}: expected 64 hex chars, got {len(hex_str)}")
            try:
                int(hex_str, 16)
            except ValueError:
                raise ValueError(f"Invalid {name}: not valid hexadecimal")

        return True

    def r_bytes(self) -> bytes:
        return bytes.fromhex(_strip_hex_prefix(self.r).zfill(64))

    def s_bytes(self) -> bytes:
        return bytes.fromhex(_strip_hex_prefix(self.s).zfill(64))

    def to_vrs(self) -> Tuple[int, int, int]:
        """Return ``(v, r, s)`` as integers, the form ``eth_account`` recovery accepts."""
        return self.v, int(_strip_hex_prefix(self.r), 16), int(_strip_hex_prefix(self.s), 16)

    def to_packed_hex(self) -> str:
        """
        Encode v/r/s into a packed 65-byte hex string (``r || s || v``).

        Returns:
            0x-prefixed 132-character hex string.

        Raises:
            ValueError: If components do not pass ``validate_format()``.
        """
        self.validate_format()
        r = _strip_hex_prefix(self.r).zfill(64)
        s = _strip_hex_prefix(self.s).zfill(64)
        return "0x" + r + s + format(self.v, "02x")


class PermitAuthorization(BasePermit):
    """
    Signed EIP-2612 permit ready to be redeemed by the library's ``borrow``.

    Consumed exactly once by a successful borrow. Replay of the same bundle
    is rejected by the token contract, which has already advanced the
    owner's nonce.

    Attributes:
        permit_type: Always ``"EIP2612"``.
        owner: Borrower's address (signer of the permit).
        spender: Library contract address.
        token: ERC-20 permit token address (the EIP-712 verifying contract).
        value: Deposit amount in the token's smallest unit.
        nonce: Token nonce the permit was signed over.
        deadline: Unix timestamp after which the permit is invalid.
        signature: Decomposed ECDSA signature.
    """

    permit_type: Literal["EIP2612"] = Field(default="EIP2612", description="Permit standard identifier")
    owner: str = Field(..., description="Token owner's wallet address (0x-prefixed)")
    spender: str = Field(..., description="Library contract address")
    token: str = Field(..., description="ERC-20 permit token address")
    value: int = Field(..., gt=0, description="Deposit amount in the token's smallest unit")
    nonce: int = Field(..., ge=0, description="Token nonce for replay protection")
    deadline: int = Field(..., ge=0, description="Unix timestamp after which the permit expires")
    signature: EVMECDSASignature = Field(..., description="EIP-2612 ECDSA signature")

    @property
    def v(self) -> int:
        return self.signature.v

    @property
    def r(self) -> str:
        return self.signature.r

    @property
    def s(self) -> str:
        return self.signature.s

    def is_expired(self, now: int) -> bool:
        return self.deadline < now


class BorrowRequest(CanonicalModel):
    """
    A user's request to borrow a title against a token deposit.

    Attributes:
        title: Book title as stored in the library contract.
        value: Deposit in the token's smallest unit (e.g. 10**17 for 0.1 of an 18-decimal token).
        spender: Library contract address that will redeem the permit.

    Fields are strict: ``True``, ``"100"`` or ``1e17`` are rejected rather
    than coerced into a deposit amount.
    """

    title: str = Field(..., strict=True, description="Book title")
    value: int = Field(..., strict=True, description="Deposit amount in the token's smallest unit")
    spender: str = Field(..., strict=True, description="Library contract address")


class BookRecord(CanonicalModel):
    """
    Availability of a single title.

    The library's ``getAvailableBooks()`` returns display strings of the form
    ``"<title> is available"`` or ``"<title> is not available"``. Those carry no
    copy count, so ``available_copies`` stays ``None`` for records decoded from
    them.
    """

    title: str = Field(..., description="Book title")
    is_available: bool = Field(..., description="Whether at least one copy can be borrowed")
    available_copies: Optional[int] = Field(None, ge=0, description="Copies left, when the contract reports it")


class EVMVerificationResult(BaseVerificationResult):
    """
    Local EIP-2612 signature verification result.

    Attributes:
        verification_type: Always ``"evm"``.
        sender: Expected permit owner.
        recovered: Address recovered from the signature, when recovery succeeded.
        authorized_amount: Permit value in the token's smallest unit.
    """

    verification_type: Literal["evm"] = Field(default="evm", description="Verification type identifier")
    sender: Optional[str] = Field(None, description="Expected permit owner")
    recovered: Optional[str] = Field(None, description="Address recovered from the signature")
    authorized_amount: Optional[int] = Field(None, ge=0, description="Permit value in the token's smallest unit")


class EVMTransactionConfirmation(BaseTransactionConfirmation):
    """
    EVM transaction confirmation for a library write call.

    Attributes:
        confirmation_type: Always ``"evm"``
        tx_hash: Transaction hash (0x-prefixed hex string)
        block_number: Block number containing the transaction
        gas_used: Actual gas consumed by the transaction
        transaction_fee: Fee paid in wei
        from_address: Transaction sender address
        to_address: Library contract address

    Example:
        confirmation = await library.borrow(...)
        if confirmation.is_success():
            print(f"Borrowed in block {confirmation.block_number}")
    """

    confirmation_type: Literal["evm"] = Field(default="evm", description="Confirmation type identifier")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string on EVM)")
    block_number: Optional[int] = Field(None, ge=0, description="Block number containing transaction")
    gas_used: Optional[int] = Field(None, ge=0, description="Actual gas consumed by transaction")
    transaction_fee: Optional[int] = Field(None, ge=0, description="Transaction fee in wei")
    from_address: Optional[str] = Field(None, description="Transaction sender address")
    to_address: Optional[str] = Field(None, description="Transaction receiver/contract address")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Call-specific details (e.g. title)")


class BorrowResult(CanonicalModel):
    """
    Outcome of a successful permit-backed borrow.

    Attributes:
        title: Borrowed title
        authorization: The permit that was redeemed
        confirmation: Receipt summary of the ``borrow`` transaction
    """

    title: str = Field(..., description="Borrowed title")
    authorization: PermitAuthorization = Field(..., description="Redeemed permit")
    confirmation: EVMTransactionConfirmation = Field(..., description="Borrow transaction confirmation")
