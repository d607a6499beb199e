"""Persistence of the open-session marker outside the database."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Union

from .db import StorageError
from .models import SessionState

logger = logging.getLogger(__name__)

START_KEY = "start_timestamp"


class SessionStateStore:
    """Load and save :class:`SessionState` as a small JSON settings file.

    A missing file, or a file without ``start_timestamp``, means idle.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> SessionState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return SessionState()
        except OSError:
            logger.error("Could not read session state from %s; assuming idle.", self.path, exc_info=True)
            return SessionState()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Session state file %s is corrupt; assuming idle.", self.path)
            return SessionState()

        value = payload.get(START_KEY) if isinstance(payload, dict) else None
        if value is None:
            return SessionState()
        if isinstance(value, bool) or not isinstance(value, int):
            logger.warning("Ignoring non-integer session start %r in %s.", value, self.path)
            return SessionState()
        return SessionState(start_timestamp=value)

    def save(self, state: SessionState) -> None:
        payload = {} if state.start_timestamp is None else {START_KEY: state.start_timestamp}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Could not save session state to {self.path}: {exc}") from exc
