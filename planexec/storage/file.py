"""
File-based session storage.

One JSON document per session:

    <data_dir>/execution-sessions/<session_id>.json

Writes go to a uniquely named temp file in the same directory and are moved
into place with os.replace, which is atomic on POSIX and Windows. Readers
therefore see either the previous or the new version of a session.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]
from pydantic import ValidationError

from planexec.logging import get_logger
from planexec.session.models import ExecutionSession
from planexec.storage.base import ListSessionsOptions, SessionStorage

logger = get_logger(__name__)

SESSIONS_DIRNAME = "execution-sessions"


class FileSessionStorage(SessionStorage):
    """Store sessions as JSON files.

    Parameters
    ----------
    data_dir:
        Root data directory. Sessions live in its ``execution-sessions``
        subdirectory, created on first write.
    """

    def __init__(self, data_dir: str | Path = ".data") -> None:
        self.sessions_dir: Path = Path(data_dir) / SESSIONS_DIRNAME

    def _path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    async def _ensure_dir(self) -> None:
        await aiofiles.os.makedirs(self.sessions_dir, exist_ok=True)

    async def save_session(self, session: ExecutionSession) -> None:
        await self._ensure_dir()
        target = self._path(session.id)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")

        try:
            async with aiofiles.open(tmp, mode="w", encoding="utf-8") as fh:
                await fh.write(session.to_json())
            await aiofiles.os.replace(tmp, target)
        except BaseException:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)
            raise

        logger.debug("session_saved", session_id=session.id, status=session.status.value)

    async def load_session(self, session_id: str) -> Optional[ExecutionSession]:
        path = self._path(session_id)
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as fh:
                content = await fh.read()
        except FileNotFoundError:
            return None
        return ExecutionSession.from_json(content)

    async def delete_session(self, session_id: str) -> None:
        try:
            await aiofiles.os.remove(self._path(session_id))
        except FileNotFoundError:
            pass

    async def list_sessions(self, options: Optional[ListSessionsOptions] = None) -> list[ExecutionSession]:
        options = options or ListSessionsOptions()
        sessions = [s for s in await self._load_all() if _matches(s, options)]
        sessions.sort(key=lambda s: s.created_at, reverse=True)

        end = options.offset + options.limit if options.limit is not None else None
        return sessions[options.offset:end]

    async def _load_all(self) -> list[ExecutionSession]:
        await self._ensure_dir()
        sessions: list[ExecutionSession] = []
        for name in sorted(await aiofiles.os.listdir(self.sessions_dir)):
            if not name.endswith(".json") or name.startswith("."):
                continue
            try:
                async with aiofiles.open(self.sessions_dir / name, mode="r", encoding="utf-8") as fh:
                    sessions.append(ExecutionSession.from_json(await fh.read()))
            except (OSError, ValidationError, ValueError) as e:
                logger.warning("session_file_skipped", file=name, error=str(e))
        return sessions


def _matches(session: ExecutionSession, options: ListSessionsOptions) -> bool:
    if options.plan_id and session.plan_id != options.plan_id:
        return False
    if options.base_plan_id and session.base_plan_id != options.base_plan_id:
        return False
    if options.status and session.status != options.status:
        return False
    if options.platform and session.platform != options.platform:
        return False
    return True
