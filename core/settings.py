"""
Persistent workspace settings: a flat JSON document at a per-user path.

Writes are not atomic. Repeated saves inside the debounce window collapse
into a single trailing write of the most recent value.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Optional, Tuple

from .config import SETTINGS_FILE, SETTINGS_DEBOUNCE_SECONDS
from .models import WorkspaceSettings

logger = logging.getLogger(__name__)


class SettingsStore:
    """
    Loads and saves WorkspaceSettings.
    Debounced writes go through schedule(); flush() and close() force them out.
    """

    def __init__(self, path: Path = SETTINGS_FILE, debounce_seconds: float = SETTINGS_DEBOUNCE_SECONDS):
        self.path = Path(path)
        self.debounce_seconds = debounce_seconds
        self._pending: Optional[Tuple[int, WorkspaceSettings]] = None
        self._timer: Optional[threading.Timer] = None
        self._closed = False
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._generation = 0
        self._written_generation = 0

    def load(self) -> WorkspaceSettings:
        """Read settings. Missing or malformed files give the defaults."""
        if not self.path.exists():
            return WorkspaceSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, e)
            return WorkspaceSettings()
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self.path)
            return WorkspaceSettings()
        return WorkspaceSettings.from_dict(data)

    def save(self, settings: WorkspaceSettings) -> bool:
        """Write settings now. Returns False if the write failed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Could not save settings to %s: %s", self.path, e)
            return False
        logger.debug("Saved settings to %s", self.path)
        return True

    def schedule(self, settings: WorkspaceSettings) -> None:
        """Debounced save. Each call re-arms the single timer slot."""
        with self._lock:
            if self._closed:
                logger.debug("Settings store closed, dropping scheduled save")
                return
            self._generation += 1
            self._pending = (self._generation, settings)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def _take_pending(self) -> Optional[Tuple[int, WorkspaceSettings]]:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending = self._pending
            self._pending = None
            return pending

    def _write(self, generation: int, settings: WorkspaceSettings) -> bool:
        # Writes never overlap, and an older value never lands after a newer one
        with self._write_lock:
            if generation <= self._written_generation:
                logger.debug("Skipping stale settings write (generation %d)", generation)
                return True
            if not self.save(settings):
                return False
            self._written_generation = generation
            return True

    def _fire(self):
        pending = self._take_pending()
        if pending is not None:
            self._write(*pending)

    def flush(self) -> bool:
        """Write any pending value immediately."""
        pending = self._take_pending()
        if pending is None:
            return True
        return self._write(*pending)

    def close(self) -> None:
        """Flush and stop accepting scheduled saves."""
        self.flush()
        with self._lock:
            self._closed = True
