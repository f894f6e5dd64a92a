"""Optimistic mutations of the chat history and the file order.

Both flows follow the same three steps:

1. ``apply_optimistic(collection, mutation)`` updates the local collection
   immediately. Pure, never fails.
2. ``commit(mutation)`` sends the write and returns a ``Confirmation`` or a
   ``Rejection``. This is the only step with side effects; it never raises
   for request failures and never retries.
3. ``reconcile(collection, outcome)`` converges the local collection on
   server truth. Pure.

Chat sends are reconciled by the placeholder's local id, so several sends
may be in flight and resolve in any order. A rejected reorder is never
patched up item by item: the authoritative order is re-fetched and replaces
local state wholesale.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple, Union

from huddle_dashboard.collection import Item, OrderedCollection
from huddle_dashboard.errors import MutationConflict, TransportError
from huddle_dashboard.events import EventCoordinator
from huddle_dashboard.models import ChatMessage, FileEntry
from huddle_dashboard.projector import project_chat, project_files
from huddle_dashboard.retry import MUTATION_RETRY_POLICY, RetryPolicy, with_retry

logger = logging.getLogger(__name__)

SEND_FAILED_MESSAGE = "Failed to send message. Please try again."
CLEAR_FAILED_MESSAGE = "Failed to clear chat history."
REORDER_FAILED_MESSAGE = "Failed to save file order."
PLACEHOLDER_PREFIX = "temp-"


@dataclass(frozen=True)
class SendMessage:
    local_id: str
    content: str
    created_at: str
    text: str = ""


@dataclass(frozen=True)
class MoveItem:
    source: int
    destination: int
    order: Tuple[str, ...]


@dataclass(frozen=True)
class Confirmation:
    mutation: Any
    items: Tuple[Item, ...] = ()


@dataclass(frozen=True)
class Rejection:
    mutation: Any
    error: MutationConflict
    snapshot: Optional[OrderedCollection] = None


Outcome = Union[Confirmation, Rejection]


def _file_key(entry: FileEntry) -> str:
    return entry.file_hash


def _message_item(message: ChatMessage) -> Item[ChatMessage]:
    return Item(local_id=message.id, value=message, server_id=message.id)


def _conflict(exc: TransportError) -> MutationConflict:
    return MutationConflict(exc.message, status_code=exc.status_code)


# ----------------------------------------------------------------------
# Append-and-confirm
# ----------------------------------------------------------------------


class ChatMutator:
    def __init__(self, transport, policy: RetryPolicy = MUTATION_RETRY_POLICY):
        self.transport = transport
        self.policy = policy

    @staticmethod
    def prepare(text: str) -> Optional[SendMessage]:
        """Build a send for ``text``, or None if there is nothing to send."""
        content = (text or "").strip()
        if not content:
            return None
        return SendMessage(
            local_id=f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}",
            content=content,
            created_at=datetime.now(timezone.utc).isoformat(),
            text=text,
        )

    @staticmethod
    def apply_optimistic(collection: OrderedCollection, mutation: SendMessage) -> OrderedCollection:
        placeholder = ChatMessage(
            id=mutation.local_id,
            role="user",
            content=mutation.content,
            created_at=mutation.created_at,
        )
        return collection.append(Item(local_id=mutation.local_id, value=placeholder, pending=True))

    async def commit(self, mutation: SendMessage) -> Outcome:
        try:
            exchange = await with_retry(
                lambda: self.transport.send_message(mutation.content), self.policy
            )
        except TransportError as exc:
            logger.error(f"Chat send {mutation.local_id} rejected: {exc.message}")
            return Rejection(mutation, _conflict(exc))
        return Confirmation(
            mutation,
            items=(
                _message_item(exchange.user_message),
                _message_item(exchange.assistant_message),
            ),
        )

    @staticmethod
    def reconcile(collection: OrderedCollection, outcome: Outcome) -> OrderedCollection:
        remaining = collection.remove(outcome.mutation.local_id)
        if isinstance(outcome, Confirmation):
            return remaining.append(*outcome.items)
        return remaining


# ----------------------------------------------------------------------
# Reorder-and-persist
# ----------------------------------------------------------------------


class ReorderMutator:
    def __init__(self, transport, policy: RetryPolicy = MUTATION_RETRY_POLICY):
        self.transport = transport
        self.policy = policy

    @staticmethod
    def plan(collection: OrderedCollection, source: int, destination: int) -> MoveItem:
        moved = collection.move(source, destination)
        return MoveItem(source=source, destination=destination, order=tuple(moved.keys()))

    @staticmethod
    def apply_optimistic(collection: OrderedCollection, mutation: MoveItem) -> OrderedCollection:
        return collection.move(mutation.source, mutation.destination)

    async def commit(self, mutation: MoveItem, fallback: Optional[OrderedCollection] = None) -> Outcome:
        """Persist the order; on rejection, fetch the authoritative order.

        ``fallback`` is the last known server order, used when the re-fetch
        fails as well.
        """
        try:
            await with_retry(lambda: self.transport.reorder_files(mutation.order), self.policy)
        except TransportError as exc:
            logger.error(f"Reorder {mutation.source}->{mutation.destination} rejected: {exc.message}")
            return Rejection(mutation, _conflict(exc), await self._refetch(fallback))
        return Confirmation(mutation)

    async def _refetch(self, fallback: Optional[OrderedCollection]) -> Optional[OrderedCollection]:
        try:
            files = await self.transport.list_files()
        except TransportError as exc:
            logger.error(f"Could not re-fetch file order: {exc.message}")
            return fallback
        return OrderedCollection.from_values(files, key=_file_key)

    @staticmethod
    def reconcile(collection: OrderedCollection, outcome: Outcome) -> OrderedCollection:
        if isinstance(outcome, Rejection) and outcome.snapshot is not None:
            return outcome.snapshot
        return collection


# ----------------------------------------------------------------------
# Sessions: the single writers of each collection
# ----------------------------------------------------------------------


class ChatSession:
    """Chat history, input buffer and error banner for one team."""

    def __init__(self, transport, coordinator: Optional[EventCoordinator] = None):
        self.transport = transport
        self.mutator = ChatMutator(transport)
        self.coordinator = coordinator
        self.collection: OrderedCollection[ChatMessage] = OrderedCollection()
        self.input_buffer = ""
        self.error: Optional[str] = None

    @property
    def sending(self) -> bool:
        return bool(self.collection.pending())

    def messages(self) -> List[ChatMessage]:
        return self.collection.values()

    async def load_history(self, limit: int = 50) -> None:
        history = await self.transport.chat_history(limit=limit)
        self.collection = OrderedCollection(tuple(_message_item(message) for message in history))
        await self._publish()

    async def begin_send(self, text: Optional[str] = None) -> Optional[SendMessage]:
        """Show the message right away and clear the input buffer."""
        mutation = self.mutator.prepare(self.input_buffer if text is None else text)
        if mutation is None:
            return None
        self.collection = self.mutator.apply_optimistic(self.collection, mutation)
        self.input_buffer = ""
        self.error = None
        await self._publish()
        return mutation

    async def finish_send(self, mutation: SendMessage) -> Outcome:
        outcome = await self.mutator.commit(mutation)
        self.collection = self.mutator.reconcile(self.collection, outcome)
        if isinstance(outcome, Rejection):
            # Text typed since the send was started wins over the failed draft.
            if not self.input_buffer:
                self.input_buffer = mutation.text or mutation.content
            self.error = SEND_FAILED_MESSAGE
        await self._publish()
        return outcome

    async def send(self, text: Optional[str] = None) -> Optional[Outcome]:
        mutation = await self.begin_send(text)
        if mutation is None:
            return None
        return await self.finish_send(mutation)

    async def clear(self) -> bool:
        try:
            await self.transport.clear_chat()
        except TransportError as exc:
            logger.error(f"Failed to clear chat: {exc.message}")
            self.error = CLEAR_FAILED_MESSAGE
            await self._publish()
            return False
        self.collection = OrderedCollection()
        self.error = None
        await self._publish()
        return True

    async def _publish(self) -> None:
        if self.coordinator is None:
            return
        await self.coordinator.publish("chat:updated", project_chat(self))


class FileBoard:
    """Uploaded files in their user-chosen order."""

    def __init__(self, transport, coordinator: Optional[EventCoordinator] = None, view: str = "list"):
        self.transport = transport
        self.mutator = ReorderMutator(transport)
        self.coordinator = coordinator
        self.view = view
        self.collection: OrderedCollection[FileEntry] = OrderedCollection()
        self.error: Optional[str] = None
        self._server_order: OrderedCollection[FileEntry] = OrderedCollection()
        self._in_flight = 0

    @property
    def saving(self) -> bool:
        return self._in_flight > 0

    def files(self) -> List[FileEntry]:
        return self.collection.values()

    def filter(self, query: str) -> List[FileEntry]:
        needle = (query or "").strip().lower()
        return [entry for entry in self.collection.values() if needle in entry.file_name.lower()]

    async def refresh(self) -> None:
        files = await self.transport.list_files()
        self.collection = OrderedCollection.from_values(files, key=_file_key)
        self._server_order = self.collection
        await self._publish()

    async def begin_reorder(self, source: int, destination: int) -> Optional[MoveItem]:
        """Apply a drag from ``source`` to ``destination`` locally.

        Raises:
            ValueError: an index is outside the collection.
        """
        size = len(self.collection)
        if not (0 <= source < size and 0 <= destination < size):
            raise ValueError(f"indices must be between 0 and {size - 1}")
        if source == destination:
            return None
        mutation = self.mutator.plan(self.collection, source, destination)
        self.collection = self.mutator.apply_optimistic(self.collection, mutation)
        self.error = None
        self._in_flight += 1
        await self._publish()
        return mutation

    async def finish_reorder(self, mutation: MoveItem) -> Outcome:
        try:
            outcome = await self.mutator.commit(mutation, fallback=self._server_order)
        finally:
            self._in_flight -= 1

        self.collection = self.mutator.reconcile(self.collection, outcome)
        if isinstance(outcome, Rejection):
            self._server_order = self.collection
            self.error = REORDER_FAILED_MESSAGE
        else:
            lookup = {item.local_id: item for item in self.collection}
            self._server_order = OrderedCollection(
                tuple(lookup[key] for key in mutation.order if key in lookup)
            )
        await self._publish()
        return outcome

    async def reorder(self, source: int, destination: int) -> Optional[Outcome]:
        mutation = await self.begin_reorder(source, destination)
        if mutation is None:
            return None
        return await self.finish_reorder(mutation)

    async def _publish(self) -> None:
        if self.coordinator is None:
            return
        await self.coordinator.publish("files:updated", project_files(self))
