"""
Permit Token Reads

The two on-chain reads that precede every signing attempt:

build_permit_domain
    Query the token's ``name()`` and assemble the EIP-712 domain
    ``{name, version: "1", verifyingContract: token}``.

fetch_permit_nonce
    Query ``nonces(owner)``. Called once per attempt and never cached: any
    mined permit for the owner advances the counter and makes an earlier
    snapshot stale.

``ERC20PermitToken`` is the ``AsyncWeb3``-backed ``PermitTokenReader``.
"""

import logging

from web3 import AsyncWeb3

from ..bases import PermitTokenReader
from ...engine.exceptions import MetadataUnavailableError, NonceUnavailableError
from .constants import PERMIT_DOMAIN_VERSION
from .ERC20_ABI import get_permit_token_abi
from .standards import EIP712Domain

logger = logging.getLogger(__name__)


class ERC20PermitToken(PermitTokenReader):
    """
    EIP-2612 token reader over an ``AsyncWeb3`` connection.

    Example:
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        token = ERC20PermitToken(w3, "0x...")
        nonce = await token.nonces(owner)
    """

    def __init__(self, w3: AsyncWeb3, address: str):
        self._w3 = w3
        self._address = AsyncWeb3.to_checksum_address(address)
        self._contract = w3.eth.contract(address=self._address, abi=get_permit_token_abi())

    @property
    def address(self) -> str:
        return self._address

    async def name(self) -> str:
        return await self._contract.functions.name().call()

    async def nonces(self, owner: str) -> int:
        return await self._contract.functions.nonces(AsyncWeb3.to_checksum_address(owner)).call()


async def build_permit_domain(token: PermitTokenReader) -> EIP712Domain:
    """
    Build the EIP-712 domain the token will verify permits against.

    Args:
        token: Token reader for the deposit token.

    Returns:
        ``EIP712Domain`` with the token's name, version ``"1"`` and the
        token's own address as verifying contract.

    Raises:
        MetadataUnavailableError: If ``name()`` cannot be read or is empty.
    """
    try:
        name = await token.name()
    except Exception as e:
        raise MetadataUnavailableError(f"Cannot read token name from {token.address}: {e}") from e

    if not isinstance(name, str) or not name:
        raise MetadataUnavailableError(f"Token {token.address} returned an empty name")

    return EIP712Domain(
        name=name,
        version=PERMIT_DOMAIN_VERSION,
        verifyingContract=AsyncWeb3.to_checksum_address(token.address),
    )


async def fetch_permit_nonce(token: PermitTokenReader, owner: str) -> int:
    """
    Read the owner's current permit nonce.

    The result is an advisory snapshot. The token contract serializes nonce
    use; the caller must not reuse the value on a later attempt.

    Raises:
        NonceUnavailableError: If the query fails or returns a non-integer or negative value.
    """
    try:
        nonce = await token.nonces(owner)
    except Exception as e:
        raise NonceUnavailableError(f"Cannot read nonce for {owner}: {e}") from e

    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
        raise NonceUnavailableError(f"Token returned an invalid nonce for {owner}: {nonce!r}")

    logger.debug("Fetched permit nonce %d for %s", nonce, owner)
    return nonce
