"""Config files for the Crownstone SSE client.

Two files may hold ``CROWNSTONE_SSE_*`` settings, lowest precedence first:

    1. ``~/.config/crownstone-sse/config.env`` (XDG_CONFIG_HOME respected)
    2. ``.env`` in the working directory

Variables already present in the environment always win. Only known client
settings are taken from the files; other keys are left for whatever tool
shares the ``.env``. Timing and flag values are checked while loading, so a
typo is reported against its file and line instead of silently becoming a
default later.
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from crownstone_sse.settings import ENV_PREFIX

CONFIG_FILENAME = "config.env"

TIMING_KEYS = frozenset(
    {
        "CROWNSTONE_SSE_HEARTBEAT_TIMEOUT_SECONDS",
        "CROWNSTONE_SSE_CHECK_INTERVAL_SECONDS",
        "CROWNSTONE_SSE_RECONNECT_DELAY_SECONDS",
        "CROWNSTONE_SSE_TOKEN_REFRESH_DELAY_SECONDS",
    }
)
FLAG_KEYS = frozenset(
    {
        "CROWNSTONE_SSE_AUTORECONNECT",
        "CROWNSTONE_SSE_REQUIRE_AUTHENTICATION",
    }
)
KNOWN_KEYS = TIMING_KEYS | FLAG_KEYS | frozenset(
    {
        "CROWNSTONE_SSE_SSE_URL",
        "CROWNSTONE_SSE_LOGIN_URL",
        "CROWNSTONE_SSE_HUB_LOGIN_BASE_URL",
        "CROWNSTONE_SSE_PROJECT_NAME",
        "CROWNSTONE_SSE_EMAIL",
        "CROWNSTONE_SSE_PASSWORD",
        "CROWNSTONE_SSE_HUB_ID",
        "CROWNSTONE_SSE_HUB_TOKEN",
        "CROWNSTONE_SSE_ACCESS_TOKEN",
        "CROWNSTONE_SSE_LOG_LEVEL",
        "CROWNSTONE_SSE_LOG_FORMAT",
    }
)

_FLAG_VALUES = ("1", "0", "true", "false", "yes", "no")

_ASSIGNMENT = re.compile(r"^(?:export\s+)?(?P<key>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(?P<value>.*)$")
_INLINE_COMMENT = re.compile(r"\s+#.*$")


@dataclass(frozen=True)
class RejectedSetting:
    """A config file line that was not applied."""

    path: Path
    line: int
    key: str
    reason: str


@dataclass
class ConfigLoad:
    """Outcome of ``load_config``: what was applied and what was refused."""

    applied: dict[str, str] = field(default_factory=dict)
    rejected: list[RejectedSetting] = field(default_factory=list)


def config_dir() -> Path:
    """Return the client config directory (XDG_CONFIG_HOME/crownstone-sse)."""
    base = os.environ.get("XDG_CONFIG_HOME", "").strip()
    root = Path(base) if base else Path.home() / ".config"
    return root / "crownstone-sse"


def config_files() -> list[Path]:
    """Config files in the order they are merged (later files win)."""
    return [config_dir() / CONFIG_FILENAME, Path.cwd() / ".env"]


def _unquote(raw: str) -> str:
    if raw[:1] in ("'", '"'):
        end = raw.find(raw[0], 1)
        if end > 0:
            return raw[1:end]
    return _INLINE_COMMENT.sub("", raw)


def check_value(key: str, value: str) -> str | None:
    """Return why ``value`` is unusable for ``key``, or None when it is fine."""
    if key not in KNOWN_KEYS:
        return "unknown setting"
    if key in TIMING_KEYS:
        try:
            seconds = float(value)
        except ValueError:
            return "not a number"
        if not math.isfinite(seconds) or seconds < 0:
            return "must be a non-negative number of seconds"
    elif key in FLAG_KEYS and value.lower() not in _FLAG_VALUES:
        return "expected one of " + ", ".join(_FLAG_VALUES)
    return None


def read_config_file(path: str | Path) -> tuple[dict[str, str], list[RejectedSetting]]:
    """Read the client settings from one env-style file.

    Lines look like ``KEY=value`` with optional ``export``, quotes and
    trailing `` # comment``. Keys without the ``CROWNSTONE_SSE_`` prefix are
    skipped quietly; an empty value leaves the setting unset.

    Returns:
        The accepted settings and the lines that were refused. A missing or
        unreadable file gives two empty results.
    """
    path = Path(path)
    accepted: dict[str, str] = {}
    rejected: list[RejectedSetting] = []
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return accepted, rejected

    for number, text in enumerate(lines, start=1):
        text = text.strip()
        if not text or text.startswith("#"):
            continue
        match = _ASSIGNMENT.match(text)
        if match is None:
            continue
        key = match["key"]
        if not key.startswith(ENV_PREFIX):
            continue
        value = _unquote(match["value"].strip()).strip()
        if not value:
            continue
        reason = check_value(key, value)
        if reason is not None:
            rejected.append(RejectedSetting(path, number, key, reason))
            continue
        accepted[key] = value
    return accepted, rejected


def load_config(paths: list[Path] | None = None) -> ConfigLoad:
    """Load client settings from config files into ``os.environ``.

    Args:
        paths: Files to merge, lowest precedence first. Defaults to
            ``config_files()``.
    """
    result = ConfigLoad()
    merged: dict[str, str] = {}
    for path in paths if paths is not None else config_files():
        accepted, rejected = read_config_file(path)
        merged.update(accepted)
        result.rejected.extend(rejected)

    for key, value in merged.items():
        if key in os.environ:
            continue
        os.environ[key] = value
        result.applied[key] = value
    return result
