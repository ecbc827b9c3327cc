"""
EVM Book Library Adapter

Client-side access to the book library contract over ``web3.AsyncWeb3``.

Key Features:
    - Permit-backed ``borrow`` (token approval and loan in one transaction)
    - ``returnBook`` / ``addBook`` write calls
    - Catalogue reads decoded into ``BookRecord`` at this boundary

Write calls follow one path: estimate gas, build, sign with the sender
account, broadcast, and poll for the receipt. A revert surfaces as
``ContractRevertedError`` with the node's reason string untouched; transport
failures surface as ``BlockchainInteractionError``.

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound

from ..bases import LibraryContract
from ...engine.exceptions import (
    BlockchainInteractionError,
    ConfigurationError,
    ContractRevertedError,
    MalformedBookRecordError,
)
from ...schemas.bases import TransactionStatus
from .constants import DEFAULT_REQUEST_TIMEOUT, LibraryConfig
from .LIBRARY_ABI import get_library_abi
from .schemas import BookRecord, EVMTransactionConfirmation

logger = logging.getLogger(__name__)

AVAILABLE_SUFFIX = " is available"
NOT_AVAILABLE_SUFFIX = " is not available"
MINED_REVERT_FALLBACK = "Transaction reverted on-chain"


def create_async_web3(rpc_url: str, request_timeout: int = DEFAULT_REQUEST_TIMEOUT) -> AsyncWeb3:
    """Create an ``AsyncWeb3`` over HTTP with a bounded request timeout."""
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
        rpc_url,
        request_kwargs={"timeout": request_timeout},
    ))


def decode_book_record(text: str) -> BookRecord:
    """
    Decode one legacy availability string into a ``BookRecord``.

    Only the trailing suffix is stripped, so a title that itself contains
    "is available" survives intact.

    Raises:
        MalformedBookRecordError: If neither suffix is present or the title is empty.
    """
    if text.endswith(NOT_AVAILABLE_SUFFIX):
        title, available = text[: -len(NOT_AVAILABLE_SUFFIX)], False
    elif text.endswith(AVAILABLE_SUFFIX):
        title, available = text[: -len(AVAILABLE_SUFFIX)], True
    else:
        raise MalformedBookRecordError(f"Unrecognised book record: {text!r}")

    if not title:
        raise MalformedBookRecordError(f"Book record has no title: {text!r}")
    return BookRecord(title=title, is_available=available)


def _revert_reason(error: ContractLogicError) -> str:
    return getattr(error, "message", None) or str(error)


class BookLibraryAdapter(LibraryContract):
    """
    Book library contract bound to a sender account.

    Attributes:
        account: Sender account (``eth_account`` LocalAccount)
        wallet_address: Checksummed sender address

    Example:
        adapter = BookLibraryAdapter.from_config(LibraryConfig.from_env())
        for record in await adapter.list_books():
            print(record.title, record.is_available)
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        private_key: str,
        *,
        max_attempts: int = 60,
        poll_interval: float = 2.0,
    ):
        self._w3 = w3
        self._address = AsyncWeb3.to_checksum_address(address)
        self._contract = w3.eth.contract(address=self._address, abi=get_library_abi())
        self.account = Account.from_key(private_key)
        self.wallet_address = AsyncWeb3.to_checksum_address(self.account.address)
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval

    @classmethod
    def from_config(cls, config: LibraryConfig, w3: Optional[AsyncWeb3] = None) -> "BookLibraryAdapter":
        """
        Build the adapter from a ``LibraryConfig``.

        Raises:
            ConfigurationError: If the config carries no private key.
        """
        if not config.private_key:
            raise ConfigurationError("EVM_PRIVATE_KEY is required to send library transactions")
        w3 = w3 or create_async_web3(config.rpc_url, config.request_timeout)
        return cls(w3, config.library_address, config.private_key)

    @property
    def address(self) -> str:
        return self._address

    async def borrow(
        self,
        title: str,
        value: int,
        deadline: int,
        v: int,
        r: bytes,
        s: bytes,
    ) -> EVMTransactionConfirmation:
        tx_fn = self._contract.functions.borrow(title, value, deadline, v, r, s)
        return await self._send_transaction(tx_fn, {"action": "borrow", "title": title, "value": value})

    async def return_book(self, title: str) -> EVMTransactionConfirmation:
        tx_fn = self._contract.functions.returnBook(title)
        return await self._send_transaction(tx_fn, {"action": "returnBook", "title": title})

    async def add_book(self, title: str, copies: int) -> EVMTransactionConfirmation:
        """
        Add ``copies`` of ``title`` to the catalogue (library owner only).

        Raises:
            ValueError: If ``title`` is empty or ``copies`` is below 1.
        """
        if not title:
            raise ValueError("No title provided")
        if copies < 1:
            raise ValueError("Copies must be greater or equal to 1")
        tx_fn = self._contract.functions.addBook(title, copies)
        return await self._send_transaction(tx_fn, {"action": "addBook", "title": title, "copies": copies})

    async def list_books(self) -> List[BookRecord]:
        try:
            raw_records = await self._contract.functions.getAvailableBooks().call()
        except Exception as e:
            raise BlockchainInteractionError(f"Failed to read catalogue: {e}") from e
        return [decode_book_record(text) for text in raw_records]

    async def is_borrowed(self, title: str) -> bool:
        try:
            return bool(await self._contract.functions.isBorrowed(title).call({"from": self.wallet_address}))
        except Exception as e:
            raise BlockchainInteractionError(f"Failed to query loan state for {title!r}: {e}") from e

    async def _send_transaction(self, tx_fn, metadata: Dict[str, Any]) -> EVMTransactionConfirmation:
        """
        Estimate, sign, broadcast and confirm a contract call.

        Raises:
            ContractRevertedError: The call reverts in estimation or the mined receipt has status 0.
                For a mined revert the call is replayed at the receipt's block to
                recover the contract's reason.
            BlockchainInteractionError: RPC failure or receipt timeout.
        """
        try:
            gas_estimate = await tx_fn.estimate_gas({"from": self.wallet_address})
            gas_price = await self._w3.eth.gas_price
            tx_nonce = await self._w3.eth.get_transaction_count(self.wallet_address)

            tx_dict = await tx_fn.build_transaction({
                "from": self.wallet_address,
                "gas": int(gas_estimate * 1.1),
                "gasPrice": gas_price,
                "nonce": tx_nonce,
            })
            signed_tx = self.account.sign_transaction(tx_dict)
            tx_hash = AsyncWeb3.to_hex(await self._w3.eth.send_raw_transaction(signed_tx.raw_transaction))
        except ContractLogicError as e:
            raise ContractRevertedError(_revert_reason(e)) from e
        except Exception as e:
            raise BlockchainInteractionError(f"Failed to send {metadata['action']}: {e}") from e

        logger.info("Sent %s transaction %s", metadata["action"], tx_hash)

        receipt = None
        for _ in range(self._max_attempts):
            try:
                receipt = await self._w3.eth.get_transaction_receipt(tx_hash)
                if receipt:
                    break
            except TransactionNotFound:
                pass
            await asyncio.sleep(self._poll_interval)

        if not receipt:
            raise BlockchainInteractionError("Transaction confirmation timed out", tx_hash=tx_hash)

        if receipt.get("status") != 1:
            reason = await self._replay_revert_reason(tx_fn, receipt["blockNumber"], tx_hash)
            raise ContractRevertedError(reason, tx_hash=tx_hash)

        current_block = await self._w3.eth.block_number
        return EVMTransactionConfirmation(
            status=TransactionStatus.SUCCESS,
            tx_hash=tx_hash,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
            confirmations=max(current_block - receipt["blockNumber"], 0),
            transaction_fee=receipt["gasUsed"] * receipt.get("effectiveGasPrice", 0),
            from_address=receipt.get("from"),
            to_address=receipt.get("to"),
            metadata=metadata,
        )

    async def _replay_revert_reason(self, tx_fn, block_number: int, tx_hash: str) -> str:
        """
        Re-run a mined, reverted call with ``eth_call`` at its block.

        Returns the contract's revert reason verbatim, or ``MINED_REVERT_FALLBACK``
        when the replay does not revert (state moved on) or cannot be made.
        """
        try:
            await tx_fn.call({"from": self.wallet_address}, block_identifier=block_number)
        except ContractLogicError as e:
            return _revert_reason(e)
        except Exception as e:
            logger.warning("Could not replay reverted transaction %s: %s", tx_hash, e)
            return MINED_REVERT_FALLBACK
        logger.warning("Replay of reverted transaction %s at block %s did not revert", tx_hash, block_number)
        return MINED_REVERT_FALLBACK
