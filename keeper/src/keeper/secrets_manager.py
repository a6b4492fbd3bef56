"""
secrets_manager
================

Loads the keeper's signing secret and other credentials.  A secret is
read from the environment, or from a file when ``{NAME}_FILE`` is set,
so operators can mount keys into containers (Kubernetes or Docker
secrets) without exporting them into the process environment.  When both
are present the file wins.

Example usage::

    from keeper.secrets_manager import get_default_secrets_manager

    secrets = get_default_secrets_manager()
    key = secrets.first_secret("KEEPER_SECRET_KEY", "ORACLE_SECRET_KEY")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class BaseSecretsManager:
    """Abstract base class for secrets managers."""

    def get_secret(self, name: str) -> Optional[str]:  # pragma: no cover - override
        """Return the secret value for ``name`` or ``None`` if unavailable."""
        raise NotImplementedError

    def first_secret(self, *names: str) -> Optional[str]:
        """Return the first non-empty secret among ``names``, in order."""
        for name in names:
            value = self.get_secret(name)
            if value:
                return value
        return None


class EnvFileSecretsManager(BaseSecretsManager):
    """Environment variables with optional ``*_FILE`` overrides."""

    def __init__(
        self, base_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None
    ) -> None:
        #: Optional base directory to resolve relative file paths.
        self.base_path = base_path
        #: Mapping to read from; the process environment when omitted.
        self.env = os.environ if env is None else env
        self._cache: Dict[str, Optional[str]] = {}

    def get_secret(self, name: str) -> Optional[str]:
        if name in self._cache:
            return self._cache[name]

        file_path = self.env.get(f"{name}_FILE")
        if file_path:
            path = Path(file_path)
            if not path.is_absolute() and self.base_path is not None:
                path = self.base_path / path
            try:
                value: Optional[str] = path.read_text(encoding="utf-8").strip()
            except OSError as exc:
                # Never log the path contents, only that the read failed.
                logger.warning("Failed to read secret file for %s: %s", name, exc)
                value = None
        else:
            value = self.env.get(name)

        self._cache[name] = value
        return value


def get_default_secrets_manager(env: Optional[Mapping[str, str]] = None) -> BaseSecretsManager:
    """Return the secrets manager configured for this process.

    Secrets are read from ``env`` (default ``os.environ``); relative
    ``*_FILE`` paths resolve against ``SECRETS_BASE_PATH``.
    """
    env = os.environ if env is None else env
    base = env.get("SECRETS_BASE_PATH")
    return EnvFileSecretsManager(base_path=Path(base) if base else None, env=env)


__all__ = [
    "BaseSecretsManager",
    "EnvFileSecretsManager",
    "get_default_secrets_manager",
]
