"""
Base Schema Models for the Book Permit Client

This module defines the base classes every other schema model inherits from
and gives results a uniform success check.

Core Classes:
    - CanonicalModel: Pydantic base model shared by every schema
    - BaseSignature: Abstract signature component model
    - BasePermit: Abstract signed-permit model
    - BaseVerificationResult: Abstract local signature verification result
    - BaseTransactionConfirmation: Abstract contract write confirmation

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Optional, Dict, Any
from abc import ABC
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """Pydantic base model shared by every schema; fields populate by name or alias."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary representation."""
        return self.model_dump()


class BaseSignature(CanonicalModel, ABC):
    """
    Abstract base class for signature components.

    Attributes:
        signature_type: The signing standard (e.g. "EIP2612")
        created_at: Timestamp when the signature object was created
    """

    signature_type: str = Field(..., description="Type of signature (e.g., EIP2612)")
    created_at: datetime = Field(default_factory=datetime.now, description="Signature creation timestamp")

    def validate_format(self) -> bool:
        """
        Validate the signature components.

        Returns:
            bool: True if the signature format is valid.

        Raises:
            ValueError: If the signature format is invalid.
        """
        raise NotImplementedError


class BasePermit(CanonicalModel, ABC):
    """
    Abstract base class for signed permits.

    A permit is a signed message that authorizes a spender to move tokens on
    the owner's behalf. Concrete permits add owner, spender, value, nonce and
    deadline fields.

    Attributes:
        permit_type: Permit standard (e.g. "EIP2612")
        signature: Signature components
        created_at: Timestamp when the permit was created
    """

    permit_type: str = Field(..., description="Type of permit (e.g., EIP2612)")
    signature: Optional[BaseSignature] = Field(None, description="Signature components")
    created_at: datetime = Field(default_factory=datetime.now, description="Permit creation timestamp")


class VerificationStatus(str, Enum):
    """
    Outcome of a local permit signature check.

    Attributes:
        SUCCESS: Signature recovers to the expected owner
        INVALID_SIGNATURE: Signature is malformed or recovers to someone else
        EXPIRED: Permit deadline has passed
    """
    SUCCESS = "success"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"


class BaseVerificationResult(CanonicalModel, ABC):
    """
    Abstract base class for signature verification results.

    Attributes:
        verification_type: Type of verification (e.g., "evm")
        status: Verification result status
        is_valid: Whether the signature verified
        message: Human-readable status message
        error_details: Detailed error information if verification failed
        verified_at: Timestamp when verification was performed
    """

    verification_type: str = Field(..., description="Type of verification (e.g., evm)")
    status: VerificationStatus = Field(..., description="Verification result status")
    is_valid: bool = Field(..., description="Whether the signature is valid")
    message: str = Field(..., description="Human-readable status message")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Detailed error information")
    verified_at: datetime = Field(default_factory=datetime.now, description="Verification timestamp")

    def is_success(self) -> bool:
        """Return True when the signature verified."""
        return self.is_valid and self.status == VerificationStatus.SUCCESS

    def get_error_message(self) -> Optional[str]:
        """
        Get formatted error message from the verification result.

        Returns:
            Optional[str]: Error message if verification failed, None if successful.
        """
        if self.is_success():
            return None

        error_msg = f"Verification failed: {self.message}"
        if self.error_details:
            details_str = json.dumps(self.error_details, indent=2)
            error_msg += f"\nDetails: {details_str}"
        return error_msg


class TransactionStatus(str, Enum):
    """
    Execution status of a contract write call.

    Attributes:
        SUCCESS: Transaction executed successfully on-chain

    Reverted transactions raise ``ContractRevertedError`` instead of producing
    a confirmation.
    """
    SUCCESS = "success"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """
    Abstract base class for transaction confirmation data.

    Attributes:
        confirmation_type: Type of confirmation (e.g., "evm")
        status: Transaction execution status
        confirmations: Number of block confirmations
        created_at: Timestamp when confirmation was recorded
    """

    confirmation_type: str = Field(..., description="Type of confirmation (e.g., evm)")
    status: TransactionStatus = Field(..., description="Transaction execution status")
    confirmations: int = Field(default=0, ge=0, description="Number of block confirmations")
    created_at: datetime = Field(default_factory=datetime.now, description="Confirmation recording timestamp")

    def is_success(self) -> bool:
        """Return True if the transaction executed successfully on-chain."""
        return self.status == TransactionStatus.SUCCESS

