"""
Event chain execution engine.

Provides workflow orchestration on top of EventBus, processing events
recursively until no handler returns a follow-up event.
"""

import asyncio
from contextlib import aclosing, suppress
from typing import AsyncGenerator

from .events import BaseEvent, EventBus, Dependencies


class EventChain:
    """Executes event-driven workflows by chaining event handler results.

    Handlers run in a background task; ``execute()`` yields each produced
    event in order. Closing or cancelling the consumer cancels the task,
    including any handler it is waiting on, and returns once it has stopped.
    An exception raised by a handler is re-raised to the consumer once the
    events produced before it have been yielded.
    """

    def __init__(self, event_bus: EventBus, deps: Dependencies) -> None:
        self.event_bus = event_bus
        self.deps = deps

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute event chain starting from initial event.

        Yields:
            Events returned by handlers, excluding ``initial_event``.
        """
        events_queue: asyncio.Queue = asyncio.Queue()

        async def producer():
            try:
                async with aclosing(self._process_event(initial_event)) as events:
                    async for event in events:
                        await events_queue.put(event)
            finally:
                events_queue.put_nowait(None)  # sentinel

        task = asyncio.create_task(producer())
        try:
            while True:
                event = await events_queue.get()
                if event is None:
                    break
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        async with aclosing(self.event_bus.dispatch(event, self.deps)) as results:
            async for result in results:
                if result is None:
                    continue
                if not isinstance(result, BaseEvent):
                    raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
                yield result
                async with aclosing(self._process_event(result)) as follow_ups:
                    async for e in follow_ups:
                        yield e
