"""Recent sessions store, persisted as JSON."""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class SessionStore:
    """Keeps a bounded list of recent decode/check sessions.

    Writes are serialized with a lock so worker threads can record sessions
    concurrently.
    """

    def __init__(self, session_file: Path, max_entries: int = 50):
        """
        Initialize session store.

        Args:
            session_file: Path to JSON session file
            max_entries: Number of sessions kept, newest first
        """
        self.session_file = session_file
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._sessions: list[dict] = []
        self._load()

    def _load(self) -> None:
        """Load sessions from file."""
        if self.session_file.exists():
            try:
                with open(self.session_file, "r", encoding="utf-8") as f:
                    self._sessions = json.load(f).get("sessions", [])
            except (json.JSONDecodeError, OSError, AttributeError):
                self._sessions = []

    def _save(self) -> None:
        """Save sessions to file."""
        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.session_file, "w", encoding="utf-8") as f:
            json.dump({"sessions": self._sessions}, f, indent=2, ensure_ascii=False)

    def record(
        self,
        command: str,
        sources: list[str],
        status: str,
        summary: Optional[dict] = None,
    ) -> dict:
        """
        Record a finished session.

        Args:
            command: Command that ran (decode, check)
            sources: Source file names
            status: Outcome (ok, degraded, pass, warning, fail, error)
            summary: Small JSON-compatible summary of the result

        Returns:
            The stored session entry
        """
        entry = {
            "command": command,
            "sources": list(sources),
            "status": status,
            "summary": summary or {},
            "recorded_at": datetime.now().isoformat(),
        }
        with self._lock:
            self._sessions.insert(0, entry)
            del self._sessions[self.max_entries:]
            self._save()
        return entry

    def recent(self, limit: int = 10) -> list[dict]:
        """Get the most recent sessions, newest first."""
        with self._lock:
            return list(self._sessions[:limit])

    def clear(self) -> None:
        """Clear all sessions."""
        with self._lock:
            self._sessions = []
            self._save()
