# src/llmrecall/storage/json_store.py
"""
JSON file persistence for llmrecall state.

One directory holds everything a conversation needs to resume:

- ``brain.json``: the durable memory set, recent searches and counters.
- ``inserts.json``: the prompt insert ledger.
- ``settings.json``: the settings in effect.
- ``chatlog.json``: the session-grouped chat history.
- ``vectors.json``: the vault export, ids and vectors row for row.

Writes go to a temporary file that replaces the target, so a crash never
leaves half a file behind. A file that cannot be read or validated is
logged and treated as missing; callers fall back to defaults.
"""

import json
import logging
import os
import pathlib
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiofiles
import aiofiles.os as aios
from pydantic import BaseModel, ValidationError

from ..config.models import LLMRecallSettings
from ..exceptions import MemoryStoreError
from ..memory.brain import BrainState
from ..sessions.chatlog import Chatlog

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

BRAIN_FILE = "brain.json"
INSERTS_FILE = "inserts.json"
SETTINGS_FILE = "settings.json"
CHATLOG_FILE = "chatlog.json"
VECTORS_FILE = "vectors.json"


class JsonMemoryStore:
    """
    Asynchronous JSON persistence rooted at ``path``.

    Args:
        path: Storage directory. ``~`` is expanded; the directory is created on first write.
    """

    def __init__(self, path: str):
        self._storage_dir = pathlib.Path(os.path.expanduser(path))

    @property
    def path(self) -> pathlib.Path:
        return self._storage_dir

    def _file(self, name: str) -> pathlib.Path:
        return self._storage_dir / name

    async def _write_json(self, name: str, payload: str) -> None:
        target = self._file(name)
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            await aios.makedirs(self._storage_dir, exist_ok=True)
            async with aiofiles.open(tmp, mode="w", encoding="utf-8") as f:
                await f.write(payload)
            await aios.replace(tmp, target)
            logger.debug(f"Saved {target}")
        except OSError as e:
            logger.error(f"Error writing {target}: {e}")
            raise MemoryStoreError(f"Failed to write '{target}': {e}")

    async def _read_json(self, name: str) -> Optional[Any]:
        target = self._file(name)
        if not await aios.path.exists(target):
            logger.debug(f"No stored file at {target}")
            return None
        try:
            async with aiofiles.open(target, mode="r", encoding="utf-8") as f:
                content = await f.read()
            return json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable file {target}: {e}")
            return None

    async def _read_model(self, name: str, model_cls: Type[ModelT]) -> Optional[ModelT]:
        data = await self._read_json(name)
        if data is None:
            return None
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid {model_cls.__name__} data in {self._file(name)}: {e}")
            return None

    async def save_brain(self, state: BrainState) -> None:
        await self._write_json(BRAIN_FILE, state.model_dump_json(indent=2))

    async def load_brain(self) -> Optional[BrainState]:
        return await self._read_model(BRAIN_FILE, BrainState)

    async def save_inserts(self, records: List[Dict[str, Any]]) -> None:
        await self._write_json(INSERTS_FILE, json.dumps(records, indent=2))

    async def load_inserts(self) -> List[Dict[str, Any]]:
        data = await self._read_json(INSERTS_FILE)
        if not isinstance(data, list):
            if data is not None:
                logger.warning(f"Ignoring {self._file(INSERTS_FILE)}: expected a list of inserts.")
            return []
        return data

    async def save_settings(self, settings: LLMRecallSettings) -> None:
        await self._write_json(SETTINGS_FILE, settings.model_dump_json(indent=2))

    async def load_settings(self) -> Optional[LLMRecallSettings]:
        return await self._read_model(SETTINGS_FILE, LLMRecallSettings)

    async def save_chatlog(self, chatlog: Chatlog) -> None:
        await self._write_json(CHATLOG_FILE, chatlog.model_dump_json(indent=2))

    async def load_chatlog(self) -> Optional[Chatlog]:
        return await self._read_model(CHATLOG_FILE, Chatlog)

    async def save_vectors(self, ids: List[str], vectors: List[List[float]]) -> None:
        if len(ids) != len(vectors):
            raise MemoryStoreError(f"Cannot save {len(vectors)} vectors for {len(ids)} ids.")
        await self._write_json(VECTORS_FILE, json.dumps({"ids": ids, "vectors": vectors}))

    async def load_vectors(self) -> Optional[Dict[str, List[Any]]]:
        """
        The stored vault export as ``{"ids": [...], "vectors": [...]}``.

        None when the file is missing or its two lists do not line up.
        """
        data = await self._read_json(VECTORS_FILE)
        if data is None:
            return None
        ids = data.get("ids") if isinstance(data, dict) else None
        vectors = data.get("vectors") if isinstance(data, dict) else None
        if not isinstance(ids, list) or not isinstance(vectors, list) or len(ids) != len(vectors):
            logger.warning(f"Ignoring malformed vector export in {self._file(VECTORS_FILE)}.")
            return None
        return {"ids": ids, "vectors": vectors}
