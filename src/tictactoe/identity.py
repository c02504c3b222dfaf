"""Where a client keeps the token that ties it to its slot in a room."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional


class MemoryIdentityStore:
    def __init__(self) -> None:
        self._tokens: Dict[str, str] = {}

    def get(self, room_code: str) -> Optional[str]:
        return self._tokens.get(room_code)

    def set(self, room_code: str, client_id: str) -> None:
        self._tokens[room_code] = client_id

    def forget(self, room_code: str) -> None:
        self._tokens.pop(room_code, None)


class FileIdentityStore:
    """JSON file of ``room_code -> client_id``; survives restarts of the client.

    Tokens are per file, so a second device never re-claims a slot.
    """

    def __init__(self, path: os.PathLike | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, tokens: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(tokens, fh, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def get(self, room_code: str) -> Optional[str]:
        with self._lock:
            return self._read().get(room_code)

    def set(self, room_code: str, client_id: str) -> None:
        with self._lock:
            tokens = self._read()
            tokens[room_code] = client_id
            self._write(tokens)

    def forget(self, room_code: str) -> None:
        with self._lock:
            tokens = self._read()
            if tokens.pop(room_code, None) is not None:
                self._write(tokens)
