from .adapter import BookLibraryAdapter, create_async_web3, decode_book_record
from .constants import LibraryConfig, amount_to_value, value_to_amount
from .schemas import (
    EVMECDSASignature,
    PermitAuthorization,
    BorrowRequest,
    BorrowResult,
    BookRecord,
    EVMVerificationResult,
    EVMTransactionConfirmation,
)
from .signatures import (
    compose_permit_message,
    request_permit_signature,
    decompose_signature,
    sign_permit,
    LocalAccountAgent,
)
from .standards import EIP712Domain, PermitMessage, PermitTypedData
from .tokens import ERC20PermitToken, build_permit_domain, fetch_permit_nonce
from .verifies import recover_permit_signer, verify_permit_signature

__all__ = [
    "BookLibraryAdapter",
    "create_async_web3",
    "decode_book_record",
    "LibraryConfig",
    "amount_to_value",
    "value_to_amount",
    "EVMECDSASignature",
    "PermitAuthorization",
    "BorrowRequest",
    "BorrowResult",
    "BookRecord",
    "EVMVerificationResult",
    "EVMTransactionConfirmation",
    "compose_permit_message",
    "request_permit_signature",
    "decompose_signature",
    "sign_permit",
    "LocalAccountAgent",
    "EIP712Domain",
    "PermitMessage",
    "PermitTypedData",
    "ERC20PermitToken",
    "build_permit_domain",
    "fetch_permit_nonce",
    "recover_permit_signer",
    "verify_permit_signature",
]
