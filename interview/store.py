import json
import logging
import os
from pathlib import Path
from typing import Protocol

import aiofiles

from core.types import Session

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def completed_persona_ids(self) -> set[str]: ...

    async def write(self, session: Session) -> None: ...

    async def load_all(self) -> list[Session]: ...


class JsonSessionStore:
    """One JSON file per finished session under <root>/logs.

    A session file is the completion marker for its persona: a persona with a
    readable file is skipped by the next batch.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.log_dir = self.root / "logs"

    def path_for(self, session_id: str) -> Path:
        return self.log_dir / f"{session_id}.json"

    async def write(self, session: Session) -> None:
        os.makedirs(self.log_dir, exist_ok=True)
        path = self.path_for(session.id)
        # "x" refuses to overwrite: sessions are written once
        async with aiofiles.open(path, "x", encoding="utf-8") as f:
            await f.write(json.dumps(session.to_dict(), ensure_ascii=False, indent=2))
        logger.debug("Saved session %s to %s", session.id, path)

    async def _read_all(self) -> list[dict]:
        if not self.log_dir.is_dir():
            return []
        records = []
        for path in sorted(self.log_dir.glob("*.json")):
            try:
                async with aiofiles.open(path, encoding="utf-8") as f:
                    records.append(json.loads(await f.read()))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable session file %s: %s", path.name, e)
        return records

    async def completed_persona_ids(self) -> set[str]:
        # only sessions load_all accepts count as completed
        return {s.persona_id for s in await self.load_all()}

    async def load_all(self) -> list[Session]:
        sessions = []
        for record in await self._read_all():
            try:
                sessions.append(Session.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed session record: %s", e)
        return sessions
