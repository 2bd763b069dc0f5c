from bisect import insort
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Tuple
from uuid import UUID

from coach_messaging.errors import DuplicateDeliveryError
from coach_messaging.models.api.messages import MessageResponse, Role


def _order_key(message: MessageResponse) -> Tuple[datetime, UUID]:
    return message.created_at, message.id


class LocalMessageBuffer:
    """A session's in-memory copy of a conversation.

    Kept sorted by ``(created_at, id)`` with at most one entry per message id.
    Entries are replaced, never mutated, so copies handed out stay stable.
    """

    def __init__(self, messages: Iterable[MessageResponse] = ()):
        self._messages: List[MessageResponse] = []
        self._index: Dict[UUID, MessageResponse] = {}
        for message in messages:
            self.add(message)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[MessageResponse]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._index

    def as_list(self) -> List[MessageResponse]:
        return list(self._messages)

    def add(self, message: MessageResponse) -> None:
        """Insert in order; raises ``DuplicateDeliveryError`` for a known id."""
        if message.id in self._index:
            raise DuplicateDeliveryError(message.id)
        insort(self._messages, message, key=_order_key)
        self._index[message.id] = message

    def merge(self, messages: Iterable[MessageResponse]) -> int:
        """Fold fetched history in; returns how many messages were new.

        A known message only picks up a read timestamp it was missing.
        """
        added = 0
        for message in messages:
            known = self._index.get(message.id)
            if known is None:
                self.add(message)
                added += 1
            elif known.read_at is None and message.read_at is not None:
                self._replace(message.id, message.read_at)
        return added

    def mark_read(self, message_ids: Iterable[UUID], read_at: datetime) -> int:
        updated = 0
        for message_id in message_ids:
            known = self._index.get(message_id)
            if known is not None and known.read_at is None:
                self._replace(message_id, read_at)
                updated += 1
        return updated

    def mark_read_from_others(self, reader_role: Role, read_at: datetime) -> int:
        """Mirror a store-side mark-read for ``reader_role`` locally."""
        return self.mark_read(
            [
                message.id
                for message in self._messages
                if message.sender_role != reader_role and message.read_at is None
            ],
            read_at,
        )

    def unread_count(self, reader_role: Role) -> int:
        return sum(
            1
            for message in self._messages
            if message.sender_role != reader_role and message.read_at is None
        )

    def _replace(self, message_id: UUID, read_at: datetime) -> None:
        known = self._index[message_id]
        updated = known.model_copy(update={"read_at": read_at})
        position = self._messages.index(known)
        self._messages[position] = updated
        self._index[message_id] = updated
