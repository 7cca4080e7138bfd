"""Runtime settings for records.

Every setting comes from a ``TABLERECORD_*`` environment variable. Values are
read once and cached; call :func:`refresh_settings_cache` after changing the
environment (tests do this through ``monkeypatch``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

ECHO_SQL_ENV = "TABLERECORD_ECHO_SQL"
SCHEMA_REPAIR_ENV = "TABLERECORD_SCHEMA_REPAIR_ENABLED"
KEY_LENGTH_ENV = "TABLERECORD_KEY_LENGTH"

DEFAULT_KEY_LENGTH = 40

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


@dataclass(frozen=True)
class RecordSettings:
    echo_sql: bool = False
    schema_repair_enabled: bool = True
    key_length: int = DEFAULT_KEY_LENGTH


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def _positive_int(raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RecordSettings:
    """Build settings from ``environ`` (the process environment by default).

    Unrecognised values fall back to the default of that setting.
    """
    env = os.environ if environ is None else environ
    defaults = RecordSettings()
    return RecordSettings(
        echo_sql=_flag(env.get(ECHO_SQL_ENV), defaults.echo_sql),
        schema_repair_enabled=_flag(env.get(SCHEMA_REPAIR_ENV), defaults.schema_repair_enabled),
        key_length=_positive_int(env.get(KEY_LENGTH_ENV), defaults.key_length),
    )


@lru_cache(maxsize=None)
def get_settings() -> RecordSettings:
    return load_settings()


def echo_sql() -> bool:
    return get_settings().echo_sql


def schema_repair_enabled() -> bool:
    """Whether an insert may create its missing table and retry once."""
    return get_settings().schema_repair_enabled


def key_length() -> int:
    return get_settings().key_length


def refresh_settings_cache() -> None:
    get_settings.cache_clear()
