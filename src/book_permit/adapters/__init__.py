from .bases import PermitTokenReader, LibraryContract, SigningAgent, RawSignature
from .evm import (
    BookLibraryAdapter,
    ERC20PermitToken,
    LocalAccountAgent,
    LibraryConfig,
    BookRecord,
    PermitAuthorization,
    EVMTransactionConfirmation,
)

__all__ = [
    "PermitTokenReader",
    "LibraryContract",
    "SigningAgent",
    "RawSignature",
    "BookLibraryAdapter",
    "ERC20PermitToken",
    "LocalAccountAgent",
    "LibraryConfig",
    "BookRecord",
    "PermitAuthorization",
    "EVMTransactionConfirmation",
]
