"""Runtime configuration for the emergency contacts core.

Everything is environment-driven (``FIRSTAID_*``); unparsable values fall
back to the defaults instead of failing at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_NAMESPACE = "@firstaid:emergency_contacts"
DEFAULT_STORAGE_TIMEOUT_S = 10.0
DEFAULT_SAVE_RETRY_DELAYS: Tuple[float, ...] = (0.5, 1.0, 2.0)


def _default_data_dir() -> Path:
    """``$XDG_DATA_HOME/firstaid`` or ``~/.firstaid``."""
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "firstaid"
    return Path.home() / ".firstaid"


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on", "enable", "enabled"}


def _parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _parse_delays_env(name: str, default: Tuple[float, ...]) -> Tuple[float, ...]:
    """Comma-separated seconds, e.g. ``0.5,1,2``. Empty string → no retries."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw:
        return ()
    try:
        delays = tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError:
        return default
    if any(d < 0 for d in delays):
        return default
    return delays


@dataclass
class ContactsConfig:
    """Configuration for the contacts store and its persistence."""

    namespace: str = DEFAULT_NAMESPACE
    data_dir: Path = field(default_factory=_default_data_dir)
    storage_timeout_s: float = DEFAULT_STORAGE_TIMEOUT_S
    save_retry_delays: Tuple[float, ...] = DEFAULT_SAVE_RETRY_DELAYS
    encrypt_fields: bool = True
    key_path: Optional[Path] = None
    strict_primary: bool = False

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.key_path is None:
            self.key_path = self.data_dir / ".contacts.key"
        else:
            self.key_path = Path(self.key_path)
        self.namespace = self.namespace.rstrip(":")

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "storage"

    @classmethod
    def from_env(cls) -> "ContactsConfig":
        """Load config from environment variables."""
        data_dir_raw = os.getenv("FIRSTAID_DATA_DIR", "").strip()
        key_path_raw = os.getenv("FIRSTAID_KEY_PATH", "").strip()
        return cls(
            namespace=os.getenv("FIRSTAID_CONTACTS_NAMESPACE", "").strip() or DEFAULT_NAMESPACE,
            data_dir=Path(os.path.expanduser(data_dir_raw)) if data_dir_raw else _default_data_dir(),
            storage_timeout_s=_parse_float_env("FIRSTAID_STORAGE_TIMEOUT_S", DEFAULT_STORAGE_TIMEOUT_S),
            save_retry_delays=_parse_delays_env("FIRSTAID_SAVE_RETRY_DELAYS", DEFAULT_SAVE_RETRY_DELAYS),
            encrypt_fields=_parse_bool_env("FIRSTAID_ENCRYPT_FIELDS", default=True),
            key_path=Path(os.path.expanduser(key_path_raw)) if key_path_raw else None,
            strict_primary=_parse_bool_env("FIRSTAID_STRICT_PRIMARY", default=False),
        )
