"""Persistent token store — the client's equivalent of browser localStorage.

Token presence at startup is what opens a realtime session; logout clears it.
"""

import json
import os
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger()


class TokenStore:
    """Stores the bearer token in a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        """Return the saved token, or None if missing or unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            logger.warning("token_store.unreadable", path=str(self.path))
            return None
        token = data.get("token") if isinstance(data, dict) else None
        return token if isinstance(token, str) and token else None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"token": token}), encoding="utf-8")
        # Bearer tokens are credentials: owner-only
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
