"""
Token Store

Persists the access token issued at login so the chat client can
authenticate. ``CAMPUS_CHAT_ACCESS_TOKEN`` takes precedence over the file.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from campus_chat.shared.constants import ACCESS_TOKEN_KEY, DEFAULT_TOKEN_FILE, USER_KEY
from campus_chat.shared.exceptions import ConfigurationError


logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "CAMPUS_CHAT_ACCESS_TOKEN"


@dataclass
class StoredCredentials:
    """Token and user profile saved at login."""
    access_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None


class TokenStore:
    """JSON-file backed store for the access token and user profile."""

    def __init__(self, path: Union[str, Path] = DEFAULT_TOKEN_FILE) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> StoredCredentials:
        """
        Load stored credentials.

        Returns:
            Stored credentials; empty when nothing is stored.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed.
        """
        env_token = os.getenv(TOKEN_ENV_VAR)
        stored = self._read_file()
        if env_token:
            stored.access_token = env_token
        return stored

    def get_token(self) -> Optional[str]:
        """Get the current access token, or None."""
        return self.load().access_token

    def save(self, token: str, user: Optional[Dict[str, Any]] = None) -> None:
        """
        Persist a token and optional user profile.

        Args:
            token: Access token.
            user: User profile returned at login.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data: Dict[str, Any] = {ACCESS_TOKEN_KEY: token}
        if user is not None:
            data[USER_KEY] = user

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)
        try:
            os.chmod(self.path, 0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")

    def clear(self) -> None:
        """Remove stored credentials (logout)."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _read_file(self) -> StoredCredentials:
        if not self.path.exists():
            return StoredCredentials()

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in token file {self.path}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read token file {self.path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Token file {self.path} must contain a JSON object")

        token = data.get(ACCESS_TOKEN_KEY)
        user = data.get(USER_KEY)
        return StoredCredentials(
            access_token=token if isinstance(token, str) and token else None,
            user=user if isinstance(user, dict) else None,
        )
