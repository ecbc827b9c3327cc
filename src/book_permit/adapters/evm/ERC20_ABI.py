"""
ERC-20 Permit Token ABI Module

Minimal ABI fragments for the read calls the permit flow makes against the
deposit token.

Usage:
    from .ERC20_ABI import get_permit_token_abi

    contract = w3.eth.contract(address=token_address, abi=get_permit_token_abi())
    name = await contract.functions.name().call()
    nonce = await contract.functions.nonces(owner).call()
"""

from typing import Dict, Any, List


def get_name_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for ERC-20 `name()`.

    The returned name is the EIP-712 domain ``name`` of the permit.
    """
    return [
        {
            "name": "name",
            "type": "function",
            "stateMutability": "view",
            "inputs": [],
            "outputs": [{"name": "", "type": "string"}],
        }
    ]


def get_nonces_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for EIP-2612 `nonces(owner)`.

    Example:
        contract = w3.eth.contract(address=token_address, abi=get_nonces_abi())
        nonce = await contract.functions.nonces(owner).call()
    """
    return [
        {
            "name": "nonces",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "owner", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_permit_token_abi() -> List[Dict[str, Any]]:
    """Get the combined ABI used by ``ERC20PermitToken``."""
    return get_name_abi() + get_nonces_abi()
