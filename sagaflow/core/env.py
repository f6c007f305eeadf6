"""
Environment variable management with .env file support.

Used by `EngineConfig.from_env()` and by the definition loader, which
substitutes `${VAR}` references inside YAML/JSON definition files.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

_BRACED = re.compile(r"\$\{([^}:]+)(?::([?-])([^}]*))?\}")


class EnvManager:
    """
    Reads SAGAFLOW_* settings from the process environment.

    Example:
        >>> env = EnvManager()
        >>> env.load()  # loads ./.env when present
        >>> env.get_float("SAGAFLOW_STEP_TIMEOUT", 30.0)
    """

    def __init__(self, project_root: Path | str | None = None, auto_load: bool = False):
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self._loaded = False

        if auto_load:
            self.load()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self, env_file: str | Path | None = None, override: bool = False) -> bool:
        """
        Load variables from a .env file.

        Returns:
            True if the file existed and was loaded.
        """
        path = Path(env_file) if env_file is not None else self.project_root / ".env"
        if not path.exists():
            return False

        load_dotenv(path, override=override)
        self._loaded = True
        return True

    def get(self, key: str, default: str | None = None, required: bool = False) -> str | None:
        value = os.environ.get(key, default)
        if required and value is None:
            msg = f"Required environment variable not set: {key}"
            raise ValueError(msg)
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = (self.get(key) or "").strip().lower()
        if value in ("true", "1", "yes", "on"):
            return True
        if value in ("false", "0", "no", "off"):
            return False
        return default

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self.get(key, str(default)))
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float | None = None) -> float | None:
        raw = self.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError:
            return default

    def substitute(self, text: str) -> str:
        """
        Substitute ${VAR}, ${VAR:-default} and ${VAR:?error} references.

        Unknown ${VAR} references without a default are left untouched.

        Example:
            >>> os.environ["REGION"] = "eu-west-1"
            >>> env.substitute("queue-${REGION}")
            'queue-eu-west-1'
        """

        def replace(match: re.Match) -> str:
            name, operator, operand = match.group(1), match.group(2), match.group(3)
            value = os.environ.get(name)

            if operator == "-":
                return value if value is not None else operand
            if operator == "?":
                if value is None:
                    raise ValueError(operand or f"Required variable not set: {name}")
                return value
            return value if value is not None else match.group(0)

        return _BRACED.sub(replace, text)

    def substitute_value(self, value: Any) -> Any:
        """Recursively substitute variables inside strings, lists and mappings."""
        if isinstance(value, str):
            return self.substitute(value)
        if isinstance(value, dict):
            return {key: self.substitute_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.substitute_value(item) for item in value]
        return value


_global_env: EnvManager | None = None


def get_env() -> EnvManager:
    """Process-wide EnvManager."""
    global _global_env
    if _global_env is None:
        _global_env = EnvManager()
    return _global_env
