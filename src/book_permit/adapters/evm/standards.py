from dataclasses import dataclass, field
from typing import Dict, Any, List


# -----------------------------
# EIP-712 Domain
# -----------------------------

@dataclass(frozen=True)
class EIP712Domain:
    """
    EIP-712 domain the permit is bound to.

    The token contract's own domain carries only name, version and
    verifying contract. There is no chainId member, so the same signature
    is valid on any network where a token with identical name, version and
    address exists.
    """
    name: str
    version: str
    verifyingContract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "verifyingContract": self.verifyingContract,
        }


# -----------------------------
# Permit Message (EIP-2612)
# -----------------------------

@dataclass(frozen=True)
class PermitMessage:
    """
    Permit message as defined in EIP-2612.

    Immutable once built. A new message is composed for every signing
    attempt, with a freshly fetched nonce and deadline.
    """
    owner: str
    spender: str
    value: int
    nonce: int
    deadline: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


PERMIT_DOMAIN_TYPE: List[Dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "verifyingContract", "type": "address"},
]

PERMIT_TYPE: List[Dict[str, str]] = [
    {"name": "owner", "type": "address"},
    {"name": "spender", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


# -----------------------------
# EIP-712 Typed Data Wrapper
# -----------------------------

@dataclass(frozen=True)
class PermitTypedData:
    """
    EIP-712 typed data for a permit.

    ``to_dict()`` is directly consumable by ``eth_account``'s
    ``encode_typed_data(full_message=...)`` and by wallets implementing
    ``eth_signTypedData_v4``. ``message_types()`` gives the schema without
    the domain entry, the shape signing agents receive.
    """
    domain: EIP712Domain
    message: PermitMessage

    primary_type: str = "Permit"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": list(PERMIT_DOMAIN_TYPE),
            "Permit": list(PERMIT_TYPE),
        }
    )

    def message_types(self) -> Dict[str, List[Dict[str, str]]]:
        return {self.primary_type: self.types[self.primary_type]}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the typed data into a dict compatible with EIP-712 signing.
        """
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }
