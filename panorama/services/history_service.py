"""Generation history tracking."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, List, Mapping, Optional, Sequence

from panorama.services.storage_service import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "panorama_history"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One successful outpaint, newest first in the history list."""

    id: int  # creation timestamp in milliseconds
    prompt: str
    template: str  # base64 payload of the exact template sent
    mime_type: str
    result_image: str  # data URI

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "HistoryEntry":
        return cls(
            id=int(payload["id"]),
            prompt=str(payload["prompt"]),
            template=str(payload["template"]),
            mime_type=str(payload["mime_type"]),
            result_image=str(payload["result_image"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def next_entry_id(entries: Sequence[HistoryEntry], now: Optional[float] = None) -> int:
    """Return a millisecond timestamp greater than every existing entry id."""
    stamp = int((time.time() if now is None else now) * 1000)
    if entries:
        stamp = max(stamp, max(entry.id for entry in entries) + 1)
    return stamp


class GenerationHistoryService:
    """JSON-backed history store.

    The whole list lives under one key and is rewritten on every save. Reads
    never attempt partial recovery: anything unreadable is an empty history.
    """

    def __init__(self, store: KeyValueStore, key: str = HISTORY_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> List[HistoryEntry]:
        """Return the persisted entries, newest first."""
        raw = self.store.get(self.key)
        if raw is None:
            return []
        try:
            payload = json.loads(raw.decode("utf-8"))
            if not isinstance(payload, list):
                raise ValueError("history payload is not a list")
            entries = [HistoryEntry.from_dict(item) for item in payload]
        except (UnicodeDecodeError, ValueError, OverflowError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable history under %r: %s", self.key, exc)
            return []
        return entries

    def save(self, entries: Sequence[HistoryEntry]) -> None:
        """Persist the full list."""
        payload = json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)
        self.store.set(self.key, payload.encode("utf-8"))
        logger.debug("Saved %d history entries", len(entries))
