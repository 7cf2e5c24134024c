"""
Persistence for the user's personal API key.

The key lives in a small JSON file under a fixed storage key. A missing file,
missing entry or blank value all mean "no personal credential", which is not
an error: calls fall back to the server default.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .constants import CREDENTIAL_STORAGE_KEY

logger = logging.getLogger(__name__)


def normalize_credential(credential: Optional[str]) -> Optional[str]:
    """Trim a credential; blank values become None."""
    if credential is None:
        return None
    trimmed = credential.strip()
    return trimmed or None


def mask_credential(credential: Optional[str]) -> Optional[str]:
    credential = normalize_credential(credential)
    if not credential:
        return None
    if len(credential) <= 8:
        return "*" * len(credential)
    return f"{credential[:4]}...{credential[-4:]}"


class CredentialStore:
    """Reads and writes the personal API key in a local JSON file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ Could not read credential file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Optional[str]:
        """Return the stored credential, trimmed, or None."""
        value = self._read().get(CREDENTIAL_STORAGE_KEY)
        return normalize_credential(value) if isinstance(value, str) else None

    def save(self, credential: str) -> None:
        credential = normalize_credential(credential)
        if not credential:
            raise ValueError("API key must not be empty.")
        data = self._read()
        data[CREDENTIAL_STORAGE_KEY] = credential
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")
        logger.info("🔑 Personal API key saved")

    def delete(self) -> None:
        data = self._read()
        if CREDENTIAL_STORAGE_KEY not in data:
            return
        del data[CREDENTIAL_STORAGE_KEY]
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        logger.info("🔑 Personal API key removed")

    def has_credential(self) -> bool:
        return self.load() is not None
