import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from convflow.domain.constants import (
    DEFAULT_SESSIONS_ROOT,
    DEFAULT_STORAGE_KEY,
    SESSION_SUFFIX,
    SESSION_TEMP_SUFFIX,
)
from convflow.domain.errors import SnapshotError
from convflow.domain.models.workflow_state import WorkflowSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Snapshot codec and file persistence for a workflow session.

    One serialized session lives under a fixed storage key. Restoring always
    replaces the whole session; partial or merge restoration is never done.
    """

    def __init__(
        self,
        sessions_root: Path | None = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ):
        """
        Initialize the session store.

        Args:
            sessions_root: Directory holding snapshots (default: .convflow/sessions)
            storage_key: Name of the snapshot slot this store reads and writes
        """
        if not storage_key or "/" in storage_key or storage_key.startswith("."):
            raise ValueError(f"Invalid storage key: {storage_key!r}")
        self.sessions_root = sessions_root or DEFAULT_SESSIONS_ROOT
        self.storage_key = storage_key

    @property
    def session_file(self) -> Path:
        return self.sessions_root / f"{self.storage_key}{SESSION_SUFFIX}"

    # ========================================================================
    # Snapshot codec
    # ========================================================================

    @staticmethod
    def snapshot(session: WorkflowSession) -> str:
        """Serialize the whole session to a JSON document."""
        return json.dumps(SessionStore._serialize(session), ensure_ascii=False)

    @staticmethod
    def restore(serialized: str | bytes | dict[str, Any]) -> WorkflowSession:
        """
        Rebuild a session from a snapshot.

        A corrupt or invalid snapshot falls back to a fresh idle session;
        the session is recoverable by starting over.
        """
        try:
            return SessionStore._deserialize(serialized)
        except SnapshotError as e:
            logger.warning(f"Discarding unreadable session snapshot: {e}")
            return WorkflowSession()

    # ========================================================================
    # File persistence
    # ========================================================================

    def save(self, session: WorkflowSession) -> Path:
        """
        Write the session snapshot atomically.

        Returns:
            Path to the written snapshot file
        """
        self.sessions_root.mkdir(parents=True, exist_ok=True)
        session_file = self.session_file
        temp_file = session_file.with_suffix(SESSION_TEMP_SUFFIX)

        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self._serialize(session), f, indent=2, ensure_ascii=False)

        temp_file.replace(session_file)
        logger.debug(f"Saved session snapshot to {session_file}")
        return session_file

    def load(self) -> WorkflowSession:
        """
        Read the stored session for a cold start.

        Never writes: a missing or unreadable snapshot yields a fresh idle
        session without touching the file.
        """
        session_file = self.session_file
        try:
            raw = session_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return WorkflowSession()
        return self.restore(raw)

    def exists(self) -> bool:
        return self.session_file.exists()

    def clear(self) -> None:
        """Remove the stored snapshot if present."""
        self.session_file.unlink(missing_ok=True)

    def list_keys(self) -> list[str]:
        """List storage keys that have a snapshot under sessions_root."""
        if not self.sessions_root.exists():
            return []
        return sorted(
            p.name[: -len(SESSION_SUFFIX)]
            for p in self.sessions_root.iterdir()
            if p.is_file() and p.name.endswith(SESSION_SUFFIX)
        )

    # ========================================================================
    # Internals
    # ========================================================================

    @staticmethod
    def _serialize(session: WorkflowSession) -> dict[str, Any]:
        return session.model_dump(mode="json")

    @staticmethod
    def _deserialize(serialized: str | bytes | dict[str, Any]) -> WorkflowSession:
        """
        Strict snapshot parsing.

        Raises:
            SnapshotError: If the payload is not valid JSON or fails validation
        """
        if isinstance(serialized, (str, bytes)):
            try:
                data = json.loads(serialized)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise SnapshotError(f"Malformed snapshot JSON: {e}") from e
        else:
            data = serialized

        if not isinstance(data, dict):
            raise SnapshotError("Snapshot root must be an object")

        try:
            return WorkflowSession.model_validate(data)
        except ValidationError as e:
            raise SnapshotError(f"Invalid session data: {e}") from e
