"""
Local session cache.

Two durable slots per namespace: the current identity ("remember me") and
the last full snapshot, used as a warm start and for resolving display
names without a round trip. Cache semantics: write failures are logged and
ignored, unreadable data loads as empty.
"""

import logging
import re
from pathlib import Path

from pydantic import ValidationError

from classhub.schemas.academic import Snapshot
from classhub.schemas.users import Identity
from classhub.subjects import SUBJECTS

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


class LocalSessionCache:
    """JSON-file backed key-value store with a user slot and a state slot."""

    USER_SLOT = "current_user"
    STATE_SLOT = "state"

    def __init__(self, root: Path, namespace: str = "default"):
        self.directory = Path(root) / (_UNSAFE.sub("_", namespace).lstrip(".") or "default")
        self._state: Snapshot | None = None

    def _path(self, slot: str) -> Path:
        return self.directory / f"{slot}.json"

    def _write(self, slot: str, data: str) -> None:
        path = self._path(slot)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(data, encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            logger.error("Storage limit reached or access denied for %s: %s", path, e)

    def _read(self, slot: str) -> str | None:
        try:
            return self._path(slot).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Failed to read %s: %s", self._path(slot), e)
            return None

    def _remove(self, slot: str) -> None:
        try:
            self._path(slot).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to clear %s: %s", self._path(slot), e)

    # Identity slot

    def save_user(self, identity: Identity) -> None:
        self._write(self.USER_SLOT, identity.model_dump_json(by_alias=True))

    def load_user(self) -> Identity | None:
        raw = self._read(self.USER_SLOT)
        if raw is None:
            return None
        try:
            return Identity.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding malformed cached identity in %s", self.directory)
            return None

    def clear_user(self) -> None:
        self._remove(self.USER_SLOT)

    # State slot

    def save_state(self, snapshot: Snapshot) -> None:
        # Warnings describe one fetch, not the cached data
        self._state = snapshot.model_copy(update={"warnings": []})
        self._write(self.STATE_SLOT, self._state.model_dump_json(by_alias=True))

    def load_state(self) -> Snapshot:
        """Cached snapshot, or an empty one with the constant subjects."""
        if self._state is not None:
            return self._state
        raw = self._read(self.STATE_SLOT)
        if raw is not None:
            try:
                self._state = Snapshot.model_validate_json(raw)
                if not self._state.subjects:
                    self._state.subjects = list(SUBJECTS)
                return self._state
            except ValidationError:
                logger.error("Failed to parse local state in %s", self.directory)
        return Snapshot(subjects=list(SUBJECTS))
