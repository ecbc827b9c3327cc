"""
Client module for permit-backed book borrowing.

Provides the orchestrator that turns a borrow request into a signed
EIP-2612 permit and a single ``borrow`` transaction.
"""

from .permit_client import PermitBorrowClient

__all__ = ["PermitBorrowClient"]
