import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import List, Set, Union

from perfect_queue.domain.ports import DispatchTracker

logger = logging.getLogger(__name__)


def credential_digest(credential: str) -> str:
    """Stable digest used to remember a credential without storing it."""
    return hashlib.sha256(credential.encode('utf-8')).hexdigest()


class InMemoryDispatchTracker(DispatchTracker):
    """Dispatch record living as long as the calling process."""

    def __init__(self):
        self._dispatched: Set[str] = set()

    def has_dispatched(self, credential: str) -> bool:
        return credential_digest(credential) in self._dispatched

    def mark_dispatched(self, credential: str) -> None:
        self._dispatched.add(credential_digest(credential))


class FileDispatchTracker(DispatchTracker):
    """Dispatch record kept in a JSON file under the user's config directory.

    Survives restarts of the client on the same machine but is not shared
    across machines. Only SHA-256 digests of credentials are written, and only
    the newest max_entries are kept.
    """

    def __init__(self, path: Union[str, Path], max_entries: int = 100):
        self.path = Path(path)
        self.max_entries = max_entries

    def _load(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Ignoring unreadable dispatch file {self.path}: {e}")
            return []
        entries = data.get('dispatched') if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.warning(f"Ignoring malformed dispatch file {self.path}")
            return []
        return [entry for entry in entries if isinstance(entry, str)]

    def _save(self, entries: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump({'dispatched': entries[-self.max_entries:]}, f, indent=2)

    def has_dispatched(self, credential: str) -> bool:
        return credential_digest(credential) in self._load()

    def mark_dispatched(self, credential: str) -> None:
        digest = credential_digest(credential)
        entries = [entry for entry in self._load() if entry != digest]
        entries.append(digest)
        self._save(entries)


class DispatchLock:
    """Mark-then-send gate keeping a credential from being dispatched twice."""

    def __init__(self, tracker: DispatchTracker):
        self.tracker = tracker
        self._lock = threading.Lock()

    def claim(self, credential: str) -> bool:
        """Mark the credential as dispatched. False if it already was."""
        with self._lock:
            if self.tracker.has_dispatched(credential):
                logger.info("Credential already dispatched, skipping playlist creation")
                return False
            self.tracker.mark_dispatched(credential)
            return True
