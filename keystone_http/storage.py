"""
Keystone HTTP Credential Store Implementations

Provides storage backends for the access/refresh token pair.
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from .types import TokenPair


logger = logging.getLogger("keystone_http")


class MemoryStorage:
    """In-memory token storage (default, non-persistent)."""

    def __init__(self, tokens: Optional[TokenPair] = None) -> None:
        self._tokens = tokens
        self._lock = threading.Lock()

    def get_tokens(self) -> Optional[TokenPair]:
        """Get the stored token pair."""
        with self._lock:
            return self._tokens

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store a new token pair."""
        with self._lock:
            self._tokens = TokenPair(access_token, refresh_token)

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        with self._lock:
            self._tokens = None


class FileStorage:
    """File-based token storage (persistent across restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to token file. Defaults to ~/.keystone/tokens.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".keystone" / "tokens.json"

        self._lock = threading.Lock()
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

    def _read_data(self) -> Dict[str, Any]:
        """Read token data from file."""
        if not self._file_path.exists():
            return {}
        try:
            with open(self._file_path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable token file %s: %s", self._file_path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get_tokens(self) -> Optional[TokenPair]:
        """Get the stored token pair."""
        with self._lock:
            data = self._read_data()
        if not data.get("access_token"):
            return None
        return TokenPair.from_dict(data)

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store a new token pair."""
        with self._lock:
            with open(self._file_path, "w") as f:
                json.dump(TokenPair(access_token, refresh_token).to_dict(), f)
            # Owner read/write only
            os.chmod(self._file_path, 0o600)

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        with self._lock:
            if self._file_path.exists():
                self._file_path.unlink()
