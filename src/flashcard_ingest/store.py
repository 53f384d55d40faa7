"""Persistence and media collaborators.

The importer only talks to the CardStore and MediaStore interfaces. The
in-memory stores back the tests; JsonCardStore and DirectoryMediaStore back
the command line.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .models import ClassifiedCard, StoredCard, card_from_dict

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised by a store when a record cannot be read or written."""


@dataclass(frozen=True)
class StoredMedia:
    filename: str
    url: str
    size: int = 0


class CardStore(ABC):
    """Card records keyed by scope id."""

    @abstractmethod
    def recent_active(self, scope_id: str, limit: int) -> List[StoredCard]:
        """Up to ``limit`` active cards of the scope, newest first."""
        raise NotImplementedError

    @abstractmethod
    def count_active(self, scope_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def get(self, card_id: str) -> Optional[StoredCard]:
        raise NotImplementedError

    @abstractmethod
    def create(self, scope_id: str, card: ClassifiedCard, actor_id: Optional[str] = None) -> StoredCard:
        raise NotImplementedError

    @abstractmethod
    def update(
        self,
        card_id: str,
        card: ClassifiedCard,
        scope_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> StoredCard:
        raise NotImplementedError

    @abstractmethod
    def all_active(self, scope_id: str) -> List[StoredCard]:
        """Every active card of the scope, oldest first."""
        raise NotImplementedError


class InMemoryCardStore(CardStore):
    def __init__(self) -> None:
        self._records: Dict[str, StoredCard] = {}
        self._seq = 0

    def __len__(self) -> int:
        return len(self._records)

    def _active(self, scope_id: str) -> List[StoredCard]:
        return [r for r in self._records.values() if r.scope_id == str(scope_id) and r.is_active]

    def recent_active(self, scope_id: str, limit: int) -> List[StoredCard]:
        rows = sorted(self._active(scope_id), key=lambda r: r.created_seq, reverse=True)
        return rows[:limit]

    def all_active(self, scope_id: str) -> List[StoredCard]:
        return sorted(self._active(scope_id), key=lambda r: r.created_seq)

    def count_active(self, scope_id: str) -> int:
        return len(self._active(scope_id))

    def get(self, card_id: str) -> Optional[StoredCard]:
        return self._records.get(card_id)

    def create(self, scope_id: str, card: ClassifiedCard, actor_id: Optional[str] = None) -> StoredCard:
        self._seq += 1
        record = StoredCard(
            id=str(self._seq),
            scope_id=str(scope_id),
            card=card,
            created_seq=self._seq,
            created_by=actor_id,
        )
        self._records[record.id] = record
        return record

    def update(
        self,
        card_id: str,
        card: ClassifiedCard,
        scope_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> StoredCard:
        record = self._records.get(card_id)
        if record is None:
            raise StoreError(f"Card {card_id} not found")
        record.card = card
        if scope_id is not None:
            record.scope_id = str(scope_id)
        if is_active is not None:
            record.is_active = is_active
        return record


class JsonCardStore(InMemoryCardStore):
    """InMemoryCardStore persisted to a JSON file on every write."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StoreError(f"Invalid JSON in card store {self.path}: {e}")
        for row in data.get("cards", []):
            record = StoredCard(
                id=str(row["id"]),
                scope_id=str(row["scope_id"]),
                card=card_from_dict(row["card"]),
                is_active=bool(row.get("is_active", True)),
                created_seq=int(row.get("created_seq", 0)),
                created_by=row.get("created_by"),
            )
            self._records[record.id] = record
            self._seq = max(self._seq, record.created_seq)
        logger.debug("Loaded %d cards from %s", len(self._records), self.path)

    def save(self) -> None:
        rows = [
            {
                "id": r.id,
                "scope_id": r.scope_id,
                "is_active": r.is_active,
                "created_seq": r.created_seq,
                "created_by": r.created_by,
                "card": r.card.to_dict(),
            }
            for r in sorted(self._records.values(), key=lambda r: r.created_seq)
        ]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"cards": rows}, ensure_ascii=False, indent=2), encoding="utf-8")

    def create(self, scope_id: str, card: ClassifiedCard, actor_id: Optional[str] = None) -> StoredCard:
        record = super().create(scope_id, card, actor_id)
        self.save()
        return record

    def update(
        self,
        card_id: str,
        card: ClassifiedCard,
        scope_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> StoredCard:
        record = super().update(card_id, card, scope_id=scope_id, is_active=is_active)
        self.save()
        return record


class MediaStore(ABC):
    """Media blobs addressed by filename within a scope."""

    @abstractmethod
    def store(self, content: bytes, filename: str, scope_id: str) -> StoredMedia:
        raise NotImplementedError


class InMemoryMediaStore(MediaStore):
    def __init__(self) -> None:
        self.blobs: Dict[tuple, bytes] = {}

    def store(self, content: bytes, filename: str, scope_id: str) -> StoredMedia:
        self.blobs[(str(scope_id), filename)] = content
        return StoredMedia(filename=filename, url=f"memory://{scope_id}/{filename}", size=len(content))


class DirectoryMediaStore(MediaStore):
    """Writes media under ``<root>/<scope_id>/<filename>``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def store(self, content: bytes, filename: str, scope_id: str) -> StoredMedia:
        safe_name = Path(filename).name
        if not safe_name or safe_name in (".", ".."):
            raise StoreError(f"Invalid media filename: {filename!r}")
        target = self.root / str(scope_id) / safe_name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return StoredMedia(filename=filename, url=target.as_posix(), size=len(content))
