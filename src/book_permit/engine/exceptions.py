"""
Exception and Error Definitions Module

Defines the exception hierarchy for permit construction, signing, and the
library contract calls that consume the signed permit. Every exception
inherits from BookPermitError for unified handling by callers.

Exception Hierarchy:
    BookPermitError (root)
    ├── AuthorizationError (kind + reason, one per failed borrow attempt)
    │   ├── MetadataUnavailableError
    │   ├── NonceUnavailableError
    │   ├── InvalidPermitParametersError
    │   ├── SignatureRejectedError
    │   ├── AgentUnavailableError
    │   ├── MalformedSignatureError
    │   ├── AuthorizationInProgressError
    │   ├── ContractRevertedError
    │   └── DeadlineExpiredError
    ├── MalformedBookRecordError
    ├── ConfigurationError
    ├── BlockchainInteractionError
    └── InvalidTransition
"""

from typing import Optional


class BookPermitError(Exception):
    """
    Root exception class for all project-specific exceptions.

    All custom exceptions inherit from this class so that callers (for
    example a UI layer) can catch everything raised by this package in one
    place.
    """
    pass


class AuthorizationError(BookPermitError):
    """
    Base class for failures that abort a single borrow authorization attempt.

    Each subclass declares a ``kind`` naming the failure category. The
    ``reason`` is a human-readable explanation suitable for display.

    Attributes:
        kind: Failure category (e.g. ``"SignatureRejected"``)
        reason: Human-readable description of what went wrong
    """

    kind: str = "AuthorizationError"

    def __init__(self, reason: str = ""):
        self.reason = reason or self.kind
        super().__init__(self.reason)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, reason={self.reason!r})"


class MetadataUnavailableError(AuthorizationError):
    """
    Raised when the token's ``name()`` cannot be read to build the signing domain.

    Fatal to the current attempt. Not retried automatically; the caller may
    restart the whole flow.
    """

    kind = "MetadataUnavailable"


class NonceUnavailableError(AuthorizationError):
    """
    Raised when the owner's current permit nonce cannot be read from the token.
    """

    kind = "NonceUnavailable"


class InvalidPermitParametersError(AuthorizationError):
    """
    Raised before signing when permit inputs are unusable.

    This includes scenarios such as:
    - Owner or spender is not an address, or is the zero address
    - Value is not positive or does not fit in uint256
    - Empty book title
    """

    kind = "InvalidPermitParameters"


class SignatureRejectedError(AuthorizationError):
    """
    Raised when the human operator declines the signing request.

    Signing agents raise this to report a deliberate refusal. The attempt is
    abandoned and its nonce is never reused.
    """

    kind = "SignatureRejected"


class AgentUnavailableError(AuthorizationError):
    """
    Raised when the signing agent is disconnected or fails while signing.
    """

    kind = "AgentUnavailable"


class MalformedSignatureError(AuthorizationError):
    """
    Raised when a raw signature cannot be decomposed into valid (v, r, s).

    This includes scenarios such as:
    - Signature is not 65 bytes long
    - Recovery id is not 0, 1, 27 or 28
    - r or s is zero or outside the secp256k1 group order
    """

    kind = "MalformedSignature"


class AuthorizationInProgressError(AuthorizationError):
    """
    Raised when an attempt for the same (owner, spender, title) is already in flight.
    """

    kind = "AuthorizationInProgress"


class ContractRevertedError(AuthorizationError):
    """
    Raised when the library contract reverts a call.

    The revert reason is carried verbatim and never reinterpreted.

    Attributes:
        reason: Revert reason exactly as reported by the node
        tx_hash: Transaction hash when the revert happened after broadcast
    """

    kind = "ContractReverted"

    def __init__(self, reason: str = "", tx_hash: Optional[str] = None):
        super().__init__(reason)
        self.tx_hash = tx_hash


class DeadlineExpiredError(AuthorizationError):
    """
    Raised when a permit deadline has passed.

    Detected client-side before submission, or after a contract revert when
    the local clock shows the deadline has lapsed. In the latter case
    ``reason`` holds the verbatim revert reason.

    Attributes:
        deadline: The permit deadline (unix seconds)
        current_time: Clock reading when the expiry was detected
    """

    kind = "DeadlineExpired"

    def __init__(self, reason: str = "", deadline: Optional[int] = None, current_time: Optional[int] = None):
        super().__init__(reason)
        self.deadline = deadline
        self.current_time = current_time


class MalformedBookRecordError(BookPermitError):
    """
    Raised when a legacy availability string carries no known suffix.
    """
    pass


class ConfigurationError(BookPermitError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing required environment variables
    - Invalid contract addresses
    - Non-numeric timeouts or validity windows
    """
    pass


class BlockchainInteractionError(BookPermitError):
    """
    Raised when a blockchain interaction (RPC call) fails for non-revert reasons.

    This includes scenarios such as:
    - RPC call timeout
    - Network connectivity issues
    - Transaction not mined before the confirmation timeout

    Attributes:
        tx_hash: Transaction hash if the transaction was broadcast
    """

    def __init__(self, message: str = "", tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class InvalidTransition(BookPermitError):
    """
    Raised when the authorization state machine is asked for an illegal move.

    Attributes:
        current_state: State the attempt was in
        target_state: State that was requested
    """

    def __init__(self, current_state, target_state):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Invalid transition: {current_state} -> {target_state}")
