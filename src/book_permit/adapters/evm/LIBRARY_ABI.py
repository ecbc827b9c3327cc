"""
Book Library Contract ABI Module

ABI fragments for the library contract that lends books against a permit
deposit.

Functions:
    borrow(title, value, deadline, v, r, s)   permit-backed borrow
    returnBook(title)
    addBook(title, copies)                    owner only
    getAvailableBooks() -> string[]           legacy "<title> is available" strings
    isBorrowed(title) -> bool                 whether the caller holds the title
"""

from typing import Dict, Any, List


def get_borrow_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for `borrow(string,uint256,uint256,uint8,bytes32,bytes32)`.

    The contract calls ``token.permit(msg.sender, address(this), value,
    deadline, v, r, s)`` and then records the loan in the same transaction.
    """
    return [
        {
            "name": "borrow",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "title", "type": "string"},
                {"name": "value", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "v", "type": "uint8"},
                {"name": "r", "type": "bytes32"},
                {"name": "s", "type": "bytes32"},
            ],
            "outputs": [],
        }
    ]


def get_return_book_abi() -> List[Dict[str, Any]]:
    """Get ABI for `returnBook(string)`."""
    return [
        {
            "name": "returnBook",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [{"name": "title", "type": "string"}],
            "outputs": [],
        }
    ]


def get_add_book_abi() -> List[Dict[str, Any]]:
    """Get ABI for `addBook(string,uint256)`."""
    return [
        {
            "name": "addBook",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "title", "type": "string"},
                {"name": "copies", "type": "uint256"},
            ],
            "outputs": [],
        }
    ]


def get_catalogue_abi() -> List[Dict[str, Any]]:
    """Get ABI for the read-only `getAvailableBooks()` and `isBorrowed(string)` calls."""
    return [
        {
            "name": "getAvailableBooks",
            "type": "function",
            "stateMutability": "view",
            "inputs": [],
            "outputs": [{"name": "", "type": "string[]"}],
        },
        {
            "name": "isBorrowed",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "title", "type": "string"}],
            "outputs": [{"name": "", "type": "bool"}],
        },
    ]


def get_library_abi() -> List[Dict[str, Any]]:
    """Get the full ABI used by ``BookLibraryAdapter``."""
    return get_borrow_abi() + get_return_book_abi() + get_add_book_abi() + get_catalogue_abi()
