"""
Permit Client Configuration and Constants

Provides the protocol constants used by permit signing, environment-driven
configuration for the web3-backed adapters, and token amount conversion.
"""

import os
from typing import Optional
from decimal import Decimal, InvalidOperation

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from web3 import Web3

from ...engine.exceptions import ConfigurationError


#: Fixed EIP-712 domain version of the permit token.
PERMIT_DOMAIN_VERSION: str = "1"

#: Default permit validity window in seconds (deadline = now + window).
DEFAULT_PERMIT_VALIDITY_SECONDS: int = 3600

#: Default JSON-RPC request timeout in seconds.
DEFAULT_REQUEST_TIMEOUT: int = 60

#: Decimals of the deposit token.
DEFAULT_TOKEN_DECIMALS: int = 18

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"

MAX_UINT256: int = 2**256 - 1

#: secp256k1 group order; r and s must lie in [1, N).
SECP256K1_N: int = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class LibraryConfig(BaseModel):
    """
    Connection settings for the library and token contracts.

    Attributes:
        rpc_url: JSON-RPC endpoint
        library_address: Library contract (permit spender)
        token_address: ERC-20 permit token (EIP-712 verifying contract)
        private_key: Borrower key used to send transactions and, by default, to sign permits
        permit_validity_seconds: Permit deadline window
        request_timeout: Provider request timeout in seconds
    """
    rpc_url: str = Field(..., min_length=1, description="JSON-RPC endpoint URL")
    library_address: str = Field(..., description="Book library contract address")
    token_address: str = Field(..., description="ERC-20 permit token address")
    private_key: Optional[str] = Field(default=None, repr=False, description="Borrower private key")
    permit_validity_seconds: int = Field(default=DEFAULT_PERMIT_VALIDITY_SECONDS, gt=0)
    request_timeout: int = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    @field_validator("library_address", "token_address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"Invalid contract address: {value!r}")
        return Web3.to_checksum_address(value)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "LibraryConfig":
        """
        Build the configuration from environment variables.

        ``env_file``, or else the nearest ``.env`` above the working directory,
        is loaded first. Values already in the environment win.

        Environment Variables:
            - EVM_RPC_URL (required)
            - BOOK_LIBRARY_ADDRESS (required)
            - PERMIT_TOKEN_ADDRESS (required)
            - EVM_PRIVATE_KEY
            - PERMIT_VALIDITY_SECONDS (default 3600)
            - EVM_REQUEST_TIMEOUT (default 60)

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid.
        """
        dotenv.load_dotenv(env_file or dotenv.find_dotenv(usecwd=True))

        missing = [
            name for name in ("EVM_RPC_URL", "BOOK_LIBRARY_ADDRESS", "PERMIT_TOKEN_ADDRESS")
            if not os.getenv(name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        try:
            return cls(
                rpc_url=os.environ["EVM_RPC_URL"],
                library_address=os.environ["BOOK_LIBRARY_ADDRESS"],
                token_address=os.environ["PERMIT_TOKEN_ADDRESS"],
                private_key=get_private_key_from_env(),
                permit_validity_seconds=os.getenv("PERMIT_VALIDITY_SECONDS", DEFAULT_PERMIT_VALIDITY_SECONDS),
                request_timeout=os.getenv("EVM_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def get_private_key_from_env() -> Optional[str]:
    """
    Load the borrower's EVM private key from the environment.

    Environment Variable:
        - EVM_PRIVATE_KEY: 0x-prefixed hex private key

    Returns:
        str: Private key from environment, or None if not configured

    Note:
        Keep the key in the environment or a ``.env`` file that is never
        committed to version control.
    """
    return os.getenv("EVM_PRIVATE_KEY") or None


def amount_to_value(*, amount: float | int | str | Decimal, decimals: int = DEFAULT_TOKEN_DECIMALS) -> int:
    """Convert a human-readable token `amount` into smallest-unit integer `value`.

    Args:
        amount: Human-readable amount (e.g. "0.1"). Accepts float/int/str/Decimal.
        decimals: Token decimals (18 for the deposit token).

    Returns:
        int: Smallest-unit integer value, e.g. ``amount_to_value(amount="0.1") == 10**17``.

    Raises:
        ValueError: If inputs are invalid or the amount cannot be represented in smallest units.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        # str() keeps 0.1 from becoming 0.1000000000000000055...
        dec_amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e

    if dec_amount < 0:
        raise ValueError("amount must be non-negative")

    scaled = dec_amount * (Decimal(10) ** decimals)

    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"amount {amount!r} is not representable with decimals={decimals} "
            f"(would create fractional smallest units)"
        )

    return int(scaled)


def value_to_amount(*, value: int | str | Decimal, decimals: int = DEFAULT_TOKEN_DECIMALS) -> Decimal:
    """Convert a smallest-unit integer `value` into a human-readable `Decimal` amount.

    Raises:
        ValueError: If inputs are invalid.
    """
    if not isinstance(decimals, int) or decimals < 0:
        raise ValueError("decimals must be a non-negative int")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid value: {value!r}") from e

    if dec_value < 0:
        raise ValueError("value must be non-negative")

    if dec_value != dec_value.to_integral_value():
        raise ValueError("value must be an integer in smallest units")

    return dec_value / (Decimal(10) ** decimals)
