"""Persistent settings for the Done trigger.

Settings live in a JSON file inside the vault (``done_trigger_settings.json``
by default).  Keys use the same camelCase names as the Obsidian plugin's
``data.json`` so an existing plugin config can be copied over as-is:

    {
      "defaultScript": "display notification (summary of input)",
      "enableDoneHeadingTrigger": true,
      "targetFiles": ["Boards/Work.md"],
      "calendarName": "Logs"
    }

Missing keys fall back to DEFAULT_SETTINGS.  Every edit is written back
immediately.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from applescript_runner import DEFAULT_INTERPRETER

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "done_trigger_settings.json"
SETTINGS_ENV_VAR = "DONE_TRIGGER_SETTINGS"

DEFAULT_SETTINGS: dict = {
    "defaultScript": "",
    "enableDoneHeadingTrigger": True,
    "targetFiles": [],
    "calendarName": "Logs",
    "interpreter": DEFAULT_INTERPRETER,
    "scriptTimeout": None,
}

# JSON key → attribute name
_FIELDS = {
    "defaultScript": "default_script",
    "enableDoneHeadingTrigger": "enable_done_heading_trigger",
    "targetFiles": "target_files",
    "calendarName": "calendar_name",
    "interpreter": "interpreter",
    "scriptTimeout": "script_timeout",
}


class SettingsError(Exception):
    """The settings file is unreadable or an edit is invalid."""


# JSON key → required type, for the plain scalar settings
_TYPES = {
    "defaultScript": str,
    "enableDoneHeadingTrigger": bool,
    "calendarName": str,
    "interpreter": str,
}


def _validate(merged: dict) -> None:
    for key, expected in _TYPES.items():
        if not isinstance(merged[key], expected):
            raise SettingsError(
                f"{key} must be a {expected.__name__}, got {type(merged[key]).__name__}"
            )

    if not merged["interpreter"].strip():
        raise SettingsError("interpreter must not be empty")

    targets = merged["targetFiles"]
    if not isinstance(targets, list) or not all(isinstance(p, str) for p in targets):
        raise SettingsError("targetFiles must be a list of paths")

    timeout = merged["scriptTimeout"]
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise SettingsError("scriptTimeout must be a positive number of seconds or null")


@dataclass
class MonitorConfig:
    default_script: str = ""
    enable_done_heading_trigger: bool = True
    target_files: list[str] = field(default_factory=list)
    calendar_name: str = "Logs"
    interpreter: str = DEFAULT_INTERPRETER
    script_timeout: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorConfig":
        """Build a config from stored data merged over DEFAULT_SETTINGS.

        Raises SettingsError when a value has the wrong type.
        """
        merged = dict(DEFAULT_SETTINGS)
        for key, value in data.items():
            if key not in _FIELDS:
                logger.warning("Ignoring unknown settings key: %s", key)
                continue
            merged[key] = value

        _validate(merged)
        merged["targetFiles"] = list(merged["targetFiles"])

        return cls(**{_FIELDS[key]: value for key, value in merged.items()})

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in _FIELDS.items()}


def resolve_settings_path(vault: Path, override: str | None = None) -> Path:
    """Pick the settings file: explicit override, then env var, then the vault default."""
    if override:
        return Path(override)
    env_path = os.getenv(SETTINGS_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path)
    return vault / SETTINGS_FILENAME


class SettingsStore:
    """Loads and saves a MonitorConfig at a fixed path.

    ``settings`` is always the same MonitorConfig instance; loads copy the
    file's values into it, so components holding it see every reload.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.settings = MonitorConfig()

    def _read(self) -> MonitorConfig | None:
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Cannot read settings file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {self.path} must contain a JSON object")

        return MonitorConfig.from_dict(data)

    def _apply(self, fresh: MonitorConfig) -> None:
        for attr in _FIELDS.values():
            setattr(self.settings, attr, getattr(fresh, attr))

    def load(self) -> MonitorConfig:
        fresh = self._read()
        if fresh is None:
            logger.info("No settings file at %s — using defaults", self.path)
            fresh = MonitorConfig()
        else:
            logger.info(
                "Loaded settings from %s — %d target file(s)",
                self.path,
                len(fresh.target_files),
            )
        self._apply(fresh)
        return self.settings

    def reload(self) -> bool:
        """Re-read the file after an outside edit.

        Returns False, keeping the current values, when the file is missing
        or not valid yet (it may be half written).
        """
        try:
            fresh = self._read()
        except SettingsError as e:
            logger.warning("Keeping current settings: %s", e)
            return False
        if fresh is None:
            logger.warning("Settings file %s is gone — keeping current settings", self.path)
            return False
        self._apply(fresh)
        return True

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(self.settings.to_dict(), indent=2) + "\n",
            encoding="utf-8",
        )
        logger.debug("Settings saved to %s", self.path)

    # ------------------------------------------------------------------
    # Edits (each one persists immediately)
    # ------------------------------------------------------------------

    def add_target(self, vault: Path, rel_path: str) -> bool:
        """Add a vault-relative markdown file to the monitored set.

        Returns False if it was already monitored.
        """
        rel_path = Path(rel_path).as_posix()
        if Path(rel_path).is_absolute():
            raise SettingsError(f"Target must be relative to the vault: {rel_path}")
        if Path(rel_path).suffix != ".md":
            raise SettingsError(f"Target must be a markdown note (.md): {rel_path}")
        if not (vault / rel_path).is_file():
            raise SettingsError(f"No such file in vault: {rel_path}")

        if rel_path in self.settings.target_files:
            logger.info("Already monitoring: %s", rel_path)
            return False

        self.settings.target_files.append(rel_path)
        self.save()
        logger.info("Now monitoring: %s", rel_path)
        return True

    def remove_target(self, rel_path: str) -> bool:
        rel_path = Path(rel_path).as_posix()
        if rel_path not in self.settings.target_files:
            logger.warning("Not a target file: %s", rel_path)
            return False

        self.settings.target_files.remove(rel_path)
        self.save()
        logger.info("Stopped monitoring: %s", rel_path)
        return True

    def update(self, **changes) -> None:
        """Set one or more MonitorConfig attributes and save."""
        attr_to_key = {attr: key for key, attr in _FIELDS.items()}
        data = self.settings.to_dict()
        for attr, value in changes.items():
            if attr not in attr_to_key:
                raise SettingsError(f"Unknown setting: {attr}")
            data[attr_to_key[attr]] = value

        self._apply(MonitorConfig.from_dict(data))
        self.save()
