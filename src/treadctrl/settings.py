"""
User settings and device address cache.

The profile is stored as versioned JSON in the platform config directory;
the last connected device address is cached in the platform cache directory.
Unreadable files are logged and replaced by defaults.
"""

import json
import logging
import os
import platform
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .core import DEFAULT_STRIDE_LENGTH_M

logger = logging.getLogger(__name__)

APP_DIR_NAME = "treadctrl"
SETTINGS_VERSION = 1


class SettingsError(Exception):
    """Raised when a settings file cannot be interpreted."""


@dataclass
class UserProfile:
    weight_kg: float = 70.0
    stride_length_m: float = DEFAULT_STRIDE_LENGTH_M
    default_speed: float = 3.0
    simulator_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def _platform_dir(xdg_var: str, mac_subdir: str, win_var: str, unix_default: str) -> Path:
    """Resolve a per-user application directory for this platform."""
    xdg = os.environ.get(xdg_var)
    if xdg:
        return Path(xdg) / APP_DIR_NAME

    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / mac_subdir / APP_DIR_NAME
    if system == "Windows":
        base = os.environ.get(win_var) or os.environ.get(
            "APPDATA", str(Path.home() / "AppData" / "Roaming")
        )
        return Path(base) / APP_DIR_NAME
    return Path.home() / unix_default / APP_DIR_NAME


def get_config_dir() -> Path:
    return _platform_dir("XDG_CONFIG_HOME", "Application Support", "APPDATA", ".config")


def get_cache_file() -> Path:
    """Get the standard cache file location for the device address."""
    cache_path = _platform_dir("XDG_CACHE_HOME", "Caches", "LOCALAPPDATA", ".cache")
    cache_path.mkdir(parents=True, exist_ok=True)
    return cache_path / "device_address.json"


class SettingsStore:
    """Loads and saves the ``UserProfile``."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or get_config_dir() / "config.json"

    def load(self) -> UserProfile:
        """Load the stored profile, falling back to defaults.

        Returns:
            Stored profile, or a default profile if none can be read
        """
        if not self.path.exists():
            return UserProfile()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return self._decode(data)
        except (OSError, ValueError, TypeError, SettingsError) as e:
            logger.warning(f"Failed to load settings from {self.path}: {e}")
            return UserProfile()

    def save(self, profile: UserProfile) -> bool:
        """Persist the profile.

        Args:
            profile: Profile to store

        Returns:
            True if the file was written
        """
        now = datetime.now(timezone.utc).isoformat()
        created_at = now
        if self.path.exists():
            try:
                existing = json.loads(self.path.read_text(encoding="utf-8"))
                created_at = existing.get("createdAt", now)
            except (OSError, ValueError, AttributeError):
                pass

        document = {
            "version": SETTINGS_VERSION,
            "userProfile": asdict(profile),
            "createdAt": created_at,
            "lastModified": now,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            logger.info(f"Saved settings to {self.path}")
            return True
        except OSError as e:
            logger.warning(f"Failed to save settings: {e}")
            return False

    def reset(self) -> UserProfile:
        profile = UserProfile()
        self.save(profile)
        return profile

    @staticmethod
    def _decode(data: Any) -> UserProfile:
        if not isinstance(data, dict):
            raise SettingsError("Settings file must contain an object")
        version = data.get("version")
        if version != SETTINGS_VERSION:
            raise SettingsError(f"Unsupported config version: {version}")
        profile = data.get("userProfile")
        if not isinstance(profile, dict):
            raise SettingsError("Settings field 'userProfile' must be an object")
        return UserProfile.from_dict(profile)


def load_cached_address() -> Optional[str]:
    """Load cached device address from file.

    Returns:
        Cached address string if available, None otherwise
    """
    try:
        cache_file = get_cache_file()
        if cache_file.exists():
            with open(cache_file, "r") as f:
                data = json.load(f)
                return data.get("address")
    except (OSError, ValueError, AttributeError) as e:
        logger.warning(f"Failed to load cached address: {e}")
    return None


def save_cached_address(address: str) -> None:
    try:
        cache_file = get_cache_file()
        with open(cache_file, "w") as f:
            json.dump({"address": address}, f, indent=2)
        logger.info(f"Cached device address: {address}")
    except OSError as e:
        logger.warning(f"Failed to save cached address: {e}")


def clear_address_cache() -> None:
    """Clear the cached device address, forcing a scan on next connect."""
    try:
        cache_file = get_cache_file()
        if cache_file.exists():
            cache_file.unlink()
            logger.info("Cleared cached device address")
    except OSError as e:
        logger.warning(f"Failed to clear cached address: {e}")
