"""Conversation backup persistence."""

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from regis_client.chat.models import Message
from regis_client.config.settings import settings
from regis_client.utils.logger import logger


class BackupStore(Protocol):
    """
    Saves and restores an ordered list of messages.

    The chat session only depends on this contract; storage format and
    encryption are the implementation's concern.
    """

    async def save(self, messages: Sequence[Message]) -> None:
        ...

    async def load_latest(self) -> Optional[List[Message]]:
        ...


class FileBackupStore:
    """Backups as JSON files in a directory, keeping the newest N."""

    def __init__(self, directory: str | Path | None = None, max_backups: Optional[int] = None):
        """
        Initialize the backup store.

        Args:
            directory: Backup directory (defaults to settings.BACKUP_DIR)
            max_backups: Backups to keep (defaults to settings.MAX_BACKUPS)
        """
        self.directory = Path(directory or settings.BACKUP_DIR)
        self.max_backups = settings.MAX_BACKUPS if max_backups is None else max_backups
        logger.debug(f"FileBackupStore at {self.directory}, max_backups={self.max_backups}")

    async def save(self, messages: Sequence[Message]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = {
            "messages": [m.to_dict() for m in messages],
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        # Nanosecond names sort chronologically
        path = self.directory / f"{time.time_ns()}.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        self._prune()
        logger.debug(f"Saved backup ({len(messages)} messages) to {path.name}")

    async def load_latest(self) -> Optional[List[Message]]:
        backups = self._backups()
        if not backups:
            return None
        latest = backups[-1]
        try:
            payload = json.loads(latest.read_text(encoding="utf-8"))
            return [Message.from_dict(item) for item in payload["messages"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to read backup {latest.name}: {e}")
            return None

    def count(self) -> int:
        return len(self._backups())

    def clear(self) -> None:
        """Remove all backups."""
        backups = self._backups()
        for path in backups:
            path.unlink()
        logger.info(f"Cleared {len(backups)} backups")

    def _backups(self) -> List[Path]:
        if not self.directory.exists():
            return []
        return sorted(
            (p for p in self.directory.glob("*.json") if p.stem.isdigit()),
            key=lambda p: int(p.stem),
        )

    def _prune(self) -> None:
        """Delete the oldest backups beyond max_backups."""
        backups = self._backups()
        excess = len(backups) - self.max_backups
        for path in backups[:max(excess, 0)]:
            path.unlink()
        if excess > 0:
            logger.debug(f"Pruned {excess} old backups, keeping last {self.max_backups}")
