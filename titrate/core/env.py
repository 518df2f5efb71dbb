"""
Environment lookups for TitrateConfig.

``.env`` files are read with python-dotenv. ``${VAR}`` references inside YAML
configuration are expanded from the process environment:

    ${TITRATE_DB}               value, or left as written when unset
    ${TITRATE_DB:-./titrate.db} value, or the fallback
    ${TITRATE_DB:?set the db}   value, or ValueError with the message
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from dotenv import load_dotenv

T = TypeVar("T")

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})

_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::(?P<op>[-?])(?P<arg>[^}]*))?\}")


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Read a flag from an env var or a config value.

    Accepts real booleans and the usual spellings (true/false, 1/0, yes/no,
    on/off). Anything else falls back to ``default``.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return default


def _expand_reference(match: re.Match) -> str:
    name, op, arg = match.group("name", "op", "arg")
    value = os.environ.get(name)
    if value is not None:
        return value
    if op == "-":
        return arg
    if op == "?":
        raise ValueError(arg or f"Required variable not set: {name}")
    return match.group(0)


def expand(value: Any) -> Any:
    """Expand ``${VAR}`` references in a string or a nested dict/list."""
    if isinstance(value, str):
        return _REFERENCE.sub(_expand_reference, value)
    if isinstance(value, dict):
        return {key: expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand(item) for item in value]
    return value


class TitrateEnv:
    """
    Typed reads of ``TITRATE_*`` variables.

    Example:
        >>> env = TitrateEnv()
        >>> env.load()
        >>> env.get_float("TITRATE_EXTERNAL_TIMEOUT", 10.0)
    """

    def __init__(self, dotenv_dir: Path | str | None = None):
        self.dotenv_dir = Path(dotenv_dir) if dotenv_dir else Path.cwd()

    def load(self, override: bool = False) -> bool:
        """Load ``<dotenv_dir>/.env``. Returns False when there is none."""
        path = self.dotenv_dir / ".env"
        if not path.is_file():
            return False
        load_dotenv(path, override=override)
        return True

    def get(self, name: str, default: str | None = None) -> str | None:
        return os.environ.get(name, default)

    def get_bool(self, name: str, default: bool = False) -> bool:
        return parse_bool(os.environ.get(name), default)

    def get_int(self, name: str, default: int = 0) -> int:
        return self._typed(name, int, default)

    def get_float(self, name: str, default: float = 0.0) -> float:
        return self._typed(name, float, default)

    @staticmethod
    def _typed(name: str, cast: Callable[[str], T], default: T) -> T:
        raw = os.environ.get(name)
        if raw is None:
            return default
        try:
            return cast(raw)
        except ValueError:
            return default


_env: TitrateEnv | None = None


def get_env() -> TitrateEnv:
    """Process-wide TitrateEnv rooted at the working directory."""
    global _env
    if _env is None:
        _env = TitrateEnv()
    return _env
