"""
Abstract Base Classes for External Collaborators

Defines the interfaces the permit flow depends on. Concrete web3-backed
implementations live in ``adapters.evm``; tests substitute in-memory fakes.

Core Classes:
    - PermitTokenReader: Read-only view of the ERC-20 permit token
    - LibraryContract: The library contract that redeems permits
    - SigningAgent: External holder of the borrower's key (wallet, HSM, local key)

The signing agent is always injected. Nothing in this package keeps a
process-wide signer, so independent sessions never share signing state.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Union

if TYPE_CHECKING:
    from .evm.schemas import BookRecord, EVMTransactionConfirmation


RawSignature = Union[bytes, str, int]


class PermitTokenReader(ABC):
    """
    Read interface of an EIP-2612 token.

    Implementations must query the contract on every call; the permit flow
    relies on ``nonces`` never being served from a cache.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed token contract address (the EIP-712 verifying contract)."""

    @abstractmethod
    async def name(self) -> str:
        """Return the token's ``name()``."""

    @abstractmethod
    async def nonces(self, owner: str) -> int:
        """Return the token's current ``nonces(owner)``."""


class LibraryContract(ABC):
    """
    Interface of the book library contract.

    Write calls return an ``EVMTransactionConfirmation`` once mined and raise
    ``ContractRevertedError`` with the verbatim reason when the contract
    reverts. Transport failures raise ``BlockchainInteractionError``.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed library contract address (the permit spender)."""

    @abstractmethod
    async def borrow(
        self,
        title: str,
        value: int,
        deadline: int,
        v: int,
        r: bytes,
        s: bytes,
    ) -> "EVMTransactionConfirmation":
        """Redeem a permit and borrow ``title`` in one transaction."""

    @abstractmethod
    async def return_book(self, title: str) -> "EVMTransactionConfirmation":
        """Return a previously borrowed title."""

    @abstractmethod
    async def add_book(self, title: str, copies: int) -> "EVMTransactionConfirmation":
        """Add ``copies`` of ``title`` to the catalogue."""

    @abstractmethod
    async def list_books(self) -> List["BookRecord"]:
        """Return the catalogue as structured records."""

    @abstractmethod
    async def is_borrowed(self, title: str) -> bool:
        """Return whether the sender currently holds ``title``."""


class SigningAgent(ABC):
    """
    External signing capability for EIP-712 typed data.

    ``sign_typed_data`` may suspend for as long as the human operator needs.
    It returns the raw 65-byte signature (bytes, hex string or integer), raises
    ``SignatureRejectedError`` when the operator declines, and may raise any
    other exception when the agent is unreachable.
    """

    @abstractmethod
    async def get_address(self) -> str:
        """Get the signer's account address."""

    @abstractmethod
    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, Any],
        message: Dict[str, Any],
    ) -> RawSignature:
        """
        Sign EIP-712 typed data.

        Args:
            domain: EIP-712 domain
            types: Type definitions (without ``EIP712Domain``)
            message: Message to sign

        Returns:
            Raw signature ``r || s || v``
        """
