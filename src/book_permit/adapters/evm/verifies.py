"""
EVM Permit Signature Verification Helpers

Off-chain recovery of the address that signed a permit. The library
contract is the authority on whether a permit is accepted; these helpers
exist so callers and tests can check a signature before spending gas on it.

recover_permit_signer
    Rebuild the EIP-712 hash from ``PermitTypedData`` and recover the
    signer from (v, r, s).

verify_permit_signature
    Run address, deadline and recovery checks and report the outcome as an
    ``EVMVerificationResult``.
"""

import time
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

from ...schemas.bases import VerificationStatus
from .schemas import EVMECDSASignature, EVMVerificationResult
from .standards import PermitTypedData


def recover_permit_signer(typed_data: PermitTypedData, signature: EVMECDSASignature) -> str:
    """
    Recover the checksummed address that produced ``signature`` over ``typed_data``.

    A signature made over a different domain (another token name or
    verifying contract) recovers to an unrelated address rather than failing.

    Raises:
        ValueError: If the signature cannot be recovered at all.
    """
    signable = encode_typed_data(full_message=typed_data.to_dict())
    return Account.recover_message(signable, vrs=signature.to_vrs())


def verify_permit_signature(
    typed_data: PermitTypedData,
    signature: EVMECDSASignature,
    *,
    current_time: Optional[int] = None,
) -> EVMVerificationResult:
    """
    Verify that ``signature`` is the permit owner's signature over ``typed_data``.

    Checks, in order, returning on the first failure:

    1. **Format** -- v/r/s pass ``validate_format``.
    2. **Deadline** -- ``deadline >= current_time``.
    3. **Recovery** -- the recovered address equals ``message.owner``.

    Args:
        typed_data:   The permit as composed for signing.
        signature:    Decomposed signature.
        current_time: Unix timestamp for the deadline check. Defaults to ``time.time()``.

    Returns:
        ``EVMVerificationResult``; ``is_valid`` only when every check passes.
    """
    now = int(current_time) if current_time is not None else int(time.time())
    owner = typed_data.message.owner

    def _fail(
        status: VerificationStatus,
        message: str,
        error_details: Optional[Dict[str, Any]] = None,
        recovered: Optional[str] = None,
    ) -> EVMVerificationResult:
        return EVMVerificationResult(
            status=status,
            is_valid=False,
            message=message,
            error_details=error_details,
            sender=owner,
            recovered=recovered,
            authorized_amount=typed_data.message.value,
        )

    try:
        signature.validate_format()
    except ValueError as e:
        return _fail(VerificationStatus.INVALID_SIGNATURE, f"Malformed signature: {e}")

    deadline = typed_data.message.deadline
    if deadline < now:
        return _fail(
            VerificationStatus.EXPIRED,
            f"Permit expired: deadline={deadline} < current_time={now}.",
            {"deadline": deadline, "current_time": now},
        )

    try:
        recovered = recover_permit_signer(typed_data, signature)
    except Exception as e:
        return _fail(VerificationStatus.INVALID_SIGNATURE, f"Signature recovery failed: {e}")

    if recovered.lower() != owner.lower():
        return _fail(
            VerificationStatus.INVALID_SIGNATURE,
            "Recovered signer does not match permit owner.",
            {"expected": owner, "recovered": recovered},
            recovered=recovered,
        )

    return EVMVerificationResult(
        status=VerificationStatus.SUCCESS,
        is_valid=True,
        message="Signature verified.",
        sender=owner,
        recovered=recovered,
        authorized_amount=typed_data.message.value,
    )
