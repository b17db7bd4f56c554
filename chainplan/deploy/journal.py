"""Execution journal for durable, per-network deployment state.

Each network gets an append-only JSON Lines file. Every ``record`` appends
one line and syncs it to disk; loading folds the lines so the latest record
per action wins. A trailing line cut short by a crash is skipped on load,
which leaves the action at its previous state (e.g. ``submitted``) so the
executor re-polls it instead of re-submitting.
"""

import json
import logging
import os
import threading
from pathlib import Path
from urllib.parse import quote, unquote

from pydantic import ValidationError

from ..core.exceptions import AlreadyFinalized
from ..modules.models import canonical_json
from .models import JournalEntry, JournalStatus

logger = logging.getLogger(__name__)


class Journal:
    """Journal of one network.

    Without a path the journal lives in memory only.
    """

    def __init__(self, network_id: str, path: Path | None = None):
        self.network_id = network_id
        self.path = path
        self._entries: dict[str, JournalEntry] = {}
        self._lock = threading.Lock()
        self._needs_newline = False
        self._load()

    def _load(self) -> None:
        """Load entries from persistent storage."""
        if self.path is None or not self.path.exists():
            return

        content = self.path.read_text(encoding="utf-8")
        self._needs_newline = bool(content) and not content.endswith("\n")
        lines = content.splitlines()

        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entry = JournalEntry.model_validate(json.loads(line))
            except (json.JSONDecodeError, ValidationError) as e:
                if number == len(lines):
                    logger.warning(
                        "Ignoring incomplete last record in %s: %s", self.path, e
                    )
                else:
                    logger.error("Skipping corrupt record %s:%d: %s", self.path, number, e)
                continue
            self._entries[entry.action_id] = entry

        logger.debug(
            "Loaded %d journal entries for network %s", len(self._entries), self.network_id
        )

    def _append(self, entry: JournalEntry) -> None:
        """Durably append one record."""
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            if self._needs_newline:
                f.write("\n")
                self._needs_newline = False
            f.write(entry.model_dump_json() + "\n")
            f.flush()
            os.fsync(f.fileno())

    def load(self) -> dict[str, JournalEntry]:
        """Snapshot of the latest entry per action id."""
        with self._lock:
            return dict(self._entries)

    def entry_for(self, action_id: str) -> JournalEntry | None:
        """Latest entry for an action, if any."""
        with self._lock:
            return self._entries.get(action_id)

    def record(self, action_id: str, entry: JournalEntry) -> JournalEntry:
        """Atomically upsert the entry for an action.

        Args:
            action_id: Action identifier.
            entry: New state of the action.

        Returns:
            The entry now stored for the action.

        Raises:
            AlreadyFinalized: If the action is confirmed and the new entry is
                not a confirmation with a byte-identical result.
        """
        if entry.action_id != action_id:
            raise ValueError(
                f"Entry for '{entry.action_id}' recorded under '{action_id}'"
            )

        with self._lock:
            existing = self._entries.get(action_id)
            if existing is not None and existing.status == JournalStatus.CONFIRMED:
                if entry.status == JournalStatus.CONFIRMED and canonical_json(
                    entry.result
                ) == canonical_json(existing.result):
                    return existing
                raise AlreadyFinalized(action_id)

            self._append(entry)
            self._entries[action_id] = entry

        logger.debug(
            "Journaled %s as %s on %s", action_id, entry.status.value, self.network_id
        )
        return entry


class JournalStore:
    """Journals keyed by network id.

    The same module set deployed to two networks keeps independent state.
    """

    def __init__(self, directory: Path | str | None = None):
        """Initialize the store.

        Args:
            directory: Directory for journal files. None keeps journals in memory.
        """
        self.directory = Path(directory) if directory is not None else None
        self._journals: dict[str, Journal] = {}
        self._lock = threading.Lock()

    def path_for(self, network_id: str) -> Path | None:
        """Journal file of a network.

        Network ids are percent-encoded, so distinct ids never share a file
        and ``networks()`` can decode the file names back.
        """
        if self.directory is None:
            return None
        return self.directory / f"{quote(network_id, safe='')}.jsonl"

    def journal(self, network_id: str) -> Journal:
        """Get or open the journal of a network."""
        with self._lock:
            if network_id not in self._journals:
                self._journals[network_id] = Journal(network_id, self.path_for(network_id))
            return self._journals[network_id]

    def load(self, network_id: str) -> dict[str, JournalEntry]:
        """Latest entry per action id for a network."""
        return self.journal(network_id).load()

    def networks(self) -> list[str]:
        """Network ids with a journal on disk or opened in memory."""
        names = set(self._journals)
        if self.directory is not None and self.directory.exists():
            names.update(unquote(path.stem) for path in self.directory.glob("*.jsonl"))
        return sorted(names)
