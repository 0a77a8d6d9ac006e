"""Best-effort persistence of the whole application state."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import PersistenceWarning
from .models import AppSnapshot

LOG = logging.getLogger(__name__)


class StateStore:
    """Minimal blob store interface used by StateSync."""

    def read(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def write(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class YamlFileStore(StateStore):
    """Store the state as a single YAML document."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path, 'r') as f:
            return yaml.safe_load(f)

    def write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write beside the target and swap, so a crash never leaves half a file
        fd, tmp_name = tempfile.mkstemp(prefix=f'.{self.path.name}.', dir=self.path.parent)
        try:
            with os.fdopen(fd, 'w') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class MemoryStore(StateStore):
    """Keeps the last written state in memory."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = data
        self.writes = 0

    def read(self) -> Optional[Dict[str, Any]]:
        return self.data

    def write(self, data: Dict[str, Any]) -> None:
        self.data = data
        self.writes += 1


class StateSync:
    """Load and save AppSnapshots; failures are logged and swallowed."""

    def __init__(self, store: StateStore):
        self.store = store
        self.last_warning: Optional[PersistenceWarning] = None

    def _warn(self, message: str) -> None:
        self.last_warning = PersistenceWarning(message)
        LOG.warning(message)

    def load(self) -> Optional[AppSnapshot]:
        """Return the stored snapshot, or None if absent or unreadable."""
        try:
            data = self.store.read()
            if data is None:
                return None
            return AppSnapshot.model_validate(data)
        except Exception as e:  # pylint: disable=broad-except
            self._warn(f"Could not load state: {e}")
            return None

    def save(self, snapshot: AppSnapshot) -> bool:
        """Persist a snapshot. Returns False if the store failed."""
        try:
            self.store.write(snapshot.to_yaml_dict())
            LOG.debug("Saved state with %d submissions", len(snapshot.submissions))
            return True
        except Exception as e:  # pylint: disable=broad-except
            self._warn(f"Could not save state: {e}")
            return False
