"""Persisted item snapshots shared between runs."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional

from price_monitor.core.entities import ItemSnapshot, PersistedState, now_ms


logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """State location cannot be used at all."""


class StateStore:
    """Load, prune and atomically save the ASIN -> snapshot map.

    The file is plain JSON so it can be inspected by hand. A missing or
    damaged file is never fatal; the run simply starts from an empty state.
    """

    def __init__(self, path: Path, clock: Callable[[], int] = now_ms) -> None:
        self.path = Path(path)
        self.clock = clock

    def check_writable(self) -> None:
        """Make sure the state directory exists and is writable.

        Raises:
            StateStoreError: if the directory cannot be created or written
        """
        parent = self.path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot create state directory {parent}: {e}") from e

        if not os.access(parent, os.W_OK):
            raise StateStoreError(f"State directory {parent} is not writable")
        if self.path.exists() and not os.access(self.path, os.W_OK):
            raise StateStoreError(f"State file {self.path} is not writable")

    def load(self) -> PersistedState:
        if not self.path.exists():
            logger.info("No state file at %s, starting empty", self.path)
            return PersistedState()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("State file %s unreadable, starting empty: %s", self.path, e)
            return PersistedState()

        if not isinstance(raw, dict) or not isinstance(raw.get("items"), dict):
            logger.warning("State file %s has no items mapping, starting empty", self.path)
            return PersistedState()

        state = PersistedState(
            version=raw.get("version") if isinstance(raw.get("version"), int) else 1,
            updated_at=raw.get("updatedAt") if isinstance(raw.get("updatedAt"), int) else 0,
        )

        for asin, record in raw["items"].items():
            if not isinstance(record, dict):
                logger.warning("Dropping malformed state entry %s", asin)
                continue
            try:
                snapshot = ItemSnapshot.from_dict({**record, "asin": asin})
            except ValueError as e:
                logger.warning("Dropping malformed state entry %s: %s", asin, e)
                continue
            state.items[snapshot.asin] = snapshot

        logger.info("Loaded %d snapshots from %s", len(state.items), self.path)
        return state

    def save(self, state: PersistedState) -> bool:
        """Write the whole state via temp file + rename.

        Returns:
            True if the new state is in place, False if the write failed
            (the previous file is left untouched in that case)
        """
        state.updated_at = self.clock()
        tmp_path: Optional[str] = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            logger.error("Could not save state to %s: %s", self.path, e)
            return False
        finally:
            if tmp_path is not None:
                self._discard(tmp_path)

        logger.info("Saved %d snapshots to %s", len(state.items), self.path)
        return True

    def prune(self, state: PersistedState, ttl_ms: int, now: Optional[int] = None) -> int:
        """Drop entries not seen within ``ttl_ms``.

        Returns:
            Number of entries removed
        """
        cutoff = (self.clock() if now is None else now) - ttl_ms
        stale = [asin for asin, snap in state.items.items() if snap.last_seen_at < cutoff]
        for asin in stale:
            del state.items[asin]
        return len(stale)

    def get_stats(self, state: PersistedState) -> dict[str, Any]:
        """Summary numbers for the ``state`` CLI command."""
        items = list(state.items.values())
        return {
            "total": len(items),
            "notified": sum(1 for s in items if s.last_notified_at),
            "with_price": sum(1 for s in items if s.price is not None),
            "updated_at": state.updated_at,
        }

    def list_recent(self, state: PersistedState, limit: int = 20) -> list[ItemSnapshot]:
        return sorted(state.items.values(), key=lambda s: s.last_seen_at, reverse=True)[:limit]

    @staticmethod
    def _discard(tmp_path: str) -> None:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove temp state file %s: %s", tmp_path, e)
