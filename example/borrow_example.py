import asyncio
import logging

from book_permit.adapters.evm.constants import LibraryConfig, amount_to_value
from book_permit.clients.permit_client import PermitBorrowClient
from book_permit.engine.events import MessageComposedEvent, BorrowSubmittedEvent, AuthorizationFailedEvent
from book_permit.engine.exceptions import AuthorizationError

# Reads EVM_RPC_URL, EVM_PRIVATE_KEY, BOOK_LIBRARY_ADDRESS, PERMIT_TOKEN_ADDRESS from .env
config = LibraryConfig.from_env()
client = PermitBorrowClient.from_config(config)


async def on_message_composed(event, deps):
    """Shown while the wallet prompt is open."""
    print(f"✍️  Please sign the deposit permit for '{event.request.title}' "
          f"(nonce {event.typed_data.message.nonce}, deadline {event.typed_data.message.deadline})")


async def on_borrow_submitted(event, deps):
    print(f"✅ Borrowed '{event.request.title}' in tx {event.confirmation.tx_hash}")


async def on_authorization_failed(event, deps):
    print(f"❌ {event.error.kind}: {event.error.reason}")


client.hook(MessageComposedEvent, on_message_composed)
client.hook(BorrowSubmittedEvent, on_borrow_submitted)
client.hook(AuthorizationFailedEvent, on_authorization_failed)


async def main():
    for record in await client.library.list_books():
        print(f"{record.title}: {'available' if record.is_available else 'not available'}")

    try:
        await client.borrow("Dune", amount_to_value(amount="0.1"))
    except AuthorizationError:
        return

    print("Borrowed:", await client.library.is_borrowed("Dune"))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
