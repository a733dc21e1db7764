from __future__ import annotations

from typing import Iterable, Iterator, List, Set


class SubscriberStore:
    """In-memory set of chat ids that receive scheduled pushes."""

    def __init__(self, initial: Iterable[str] = ()) -> None:
        self._ids: Set[str] = {str(x).strip() for x in initial if str(x).strip()}

    def add(self, chat_id: str) -> bool:
        cid = str(chat_id)
        if cid in self._ids:
            return False
        self._ids.add(cid)
        return True

    def remove(self, chat_id: str) -> bool:
        cid = str(chat_id)
        if cid not in self._ids:
            return False
        self._ids.discard(cid)
        return True

    def snapshot(self) -> List[str]:
        return sorted(self._ids)

    def __contains__(self, chat_id: object) -> bool:
        return str(chat_id) in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._ids)
