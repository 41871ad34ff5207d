from typing import List, Optional
from pathlib import Path
import re
import structlog

from octto.domain.errors import InvalidIdentifierError
from octto.domain.models.brainstorm_state import BrainstormState, now_ms

logger = structlog.get_logger(__name__)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class StatePersistence:
    """One JSON document per brainstorm session, rewritten whole on every save"""

    def __init__(self, base_dir: str = ".octto"):
        self.base_dir = Path(base_dir)

    @staticmethod
    def validate_session_id(session_id: str) -> None:
        """
        Reject ids that could escape ``base_dir``.

        Raises:
            InvalidIdentifierError: If the id holds anything but letters, digits, ``_`` or ``-``
        """
        if not isinstance(session_id, str) or not SESSION_ID_PATTERN.fullmatch(session_id):
            raise InvalidIdentifierError(str(session_id))

    def _file_path(self, session_id: str) -> Path:
        self.validate_session_id(session_id)
        return self.base_dir / f"{session_id}.json"

    def save(self, state: BrainstormState) -> None:
        """Stamp ``updated_at`` and write the full snapshot"""

        path = self._file_path(state.session_id)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        state.updated_at = now_ms()
        path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        logger.debug("Saved state", session_id=state.session_id, path=str(path))

    def load(self, session_id: str) -> Optional[BrainstormState]:
        path = self._file_path(session_id)
        if not path.exists():
            return None
        return BrainstormState.model_validate_json(path.read_text(encoding="utf-8"))

    def delete(self, session_id: str) -> bool:
        path = self._file_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list(self) -> List[str]:
        """Ids of every persisted session"""

        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob("*.json"))
