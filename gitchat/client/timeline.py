"""
Per-conversation message timeline kept by a chat client.

Every entry is in exactly one state:

* ``Pending``   - sent optimistically, waiting for the server record
* ``Confirmed`` - backed by a server record (``delivered`` is cosmetic)
* ``Failed``    - the send failed; can be retried with the same temp id

"Deleted for me" is a separate visibility set of server ids. All operations
are safe to repeat when the same event arrives more than once.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass
class Pending:
    temp_id: str
    draft: dict[str, Any]


@dataclass
class Confirmed:
    message: dict[str, Any]
    delivered: bool = False

    @property
    def server_id(self) -> Any:
        return server_id(self.message)


@dataclass
class Failed:
    temp_id: str
    draft: dict[str, Any]
    cause: str


Entry = Union[Pending, Confirmed, Failed]


def server_id(record: dict[str, Any]) -> Any:
    """Server id of a REST record (``_id``) or live payload (``messageId``)."""
    return record.get("_id", record.get("messageId"))


def _same_content(draft: dict[str, Any], payload: dict[str, Any]) -> bool:
    return (
        draft.get("sender") == payload.get("sender")
        and draft.get("message") == payload.get("message")
        and draft.get("messageType", "text") == payload.get("messageType", "text")
    )


def _is_newer(message_id: Any, newest: int | None) -> bool:
    return newest is not None and isinstance(message_id, int) and message_id > newest


@dataclass
class MessageTimeline:
    entries: list[Entry] = field(default_factory=list)
    deleted_for_me: set = field(default_factory=set)

    def _find_temp(self, temp_id: str) -> int | None:
        for i, entry in enumerate(self.entries):
            if isinstance(entry, (Pending, Failed)) and entry.temp_id == temp_id:
                return i
        return None

    def _find_confirmed(self, message_id: Any) -> int | None:
        for i, entry in enumerate(self.entries):
            if isinstance(entry, Confirmed) and entry.server_id == message_id:
                return i
        return None

    def get(self, message_id: Any) -> Confirmed | None:
        index = self._find_confirmed(message_id)
        return self.entries[index] if index is not None else None

    def append_pending(self, draft: dict[str, Any]) -> str:
        temp_id = f"temp-{uuid.uuid4()}"
        self.entries.append(Pending(temp_id=temp_id, draft=dict(draft)))
        return temp_id

    def confirm(self, temp_id: str, record: dict[str, Any]) -> None:
        """Swap the pending entry for the server record.

        If a live copy of the same record already landed, the pending entry
        is dropped so the message shows once.
        """
        index = self._find_temp(temp_id)
        if index is None:
            self.add_confirmed(record)
            return

        if self._find_confirmed(server_id(record)) is not None:
            del self.entries[index]
        else:
            self.entries[index] = Confirmed(message=record)

    def fail(self, temp_id: str, cause: str) -> None:
        index = self._find_temp(temp_id)
        if index is None:
            return
        entry = self.entries[index]
        self.entries[index] = Failed(temp_id=temp_id, draft=entry.draft, cause=cause)

    def add_confirmed(self, record: dict[str, Any]) -> bool:
        """Append a record the server already accepted from us, unless it is shown."""
        if self._find_confirmed(server_id(record)) is not None:
            return False
        self.entries.append(Confirmed(message=record))
        return True

    def retry(self, temp_id: str) -> dict[str, Any]:
        """Flip a failed entry back to pending; returns the draft to resend."""
        index = self._find_temp(temp_id)
        if index is None or not isinstance(self.entries[index], Failed):
            raise KeyError(f"No failed message {temp_id}")
        draft = self.entries[index].draft
        self.entries[index] = Pending(temp_id=temp_id, draft=draft)
        return draft

    def receive_live(self, payload: dict[str, Any]) -> bool:
        """Append a pushed message unless it is already shown; returns True if appended."""
        if self._find_confirmed(server_id(payload)) is not None:
            return False
        for entry in self.entries:
            if isinstance(entry, Pending) and _same_content(entry.draft, payload):
                return False
        self.entries.append(Confirmed(message=dict(payload)))
        return True

    def mark_delivered(self, message_id: Any) -> bool:
        entry = self.get(message_id)
        if entry is None:
            return False
        entry.delivered = True
        return True

    def remove(self, message_id: Any) -> bool:
        index = self._find_confirmed(message_id)
        if index is None:
            return False
        del self.entries[index]
        return True

    def hide_for_me(self, message_id: Any) -> None:
        self.deleted_for_me.add(message_id)

    def apply_reaction(self, message_id: Any, username: str, reaction: str) -> bool:
        """Same reaction again removes it; a different one replaces it."""
        entry = self.get(message_id)
        if entry is None:
            return False

        reactions = [r for r in entry.message.get("reactions") or [] if r.get("username") != username]
        previous = next(
            (r for r in entry.message.get("reactions") or [] if r.get("username") == username),
            None,
        )
        if previous is None or previous.get("reaction") != reaction:
            reactions.append({"username": username, "reaction": reaction})
        entry.message["reactions"] = reactions
        return True

    def load_history(self, records: list[dict[str, Any]]) -> None:
        """Replace confirmed entries with a page of server history, oldest first.

        The page is authoritative: a confirmed entry missing from it was
        deleted on the server and is dropped. Only live records newer than
        the page's newest id survive, since they arrived after the fetch.
        Known records keep their ``delivered`` flag, and pending or failed
        sends stay at the end.
        """
        delivered = {
            entry.server_id: entry.delivered
            for entry in self.entries
            if isinstance(entry, Confirmed)
        }
        page_ids = {server_id(record) for record in records}
        newest = max((i for i in page_ids if isinstance(i, int)), default=None)

        merged: list[Entry] = [
            Confirmed(message=record, delivered=delivered.get(server_id(record), False))
            for record in records
        ]
        merged.extend(
            entry for entry in self.entries
            if isinstance(entry, Confirmed)
            and entry.server_id not in page_ids
            and _is_newer(entry.server_id, newest)
        )
        merged.extend(entry for entry in self.entries if isinstance(entry, (Pending, Failed)))
        self.entries = merged

    def visible(self) -> list[Entry]:
        return [
            entry for entry in self.entries
            if not (isinstance(entry, Confirmed) and entry.server_id in self.deleted_for_me)
        ]
