import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Tuple

import exifsession.settings as default_settings

log = logging.getLogger(__name__)


class MergedSettings:
    """
    Attribute access to the package configuration.

    Values come from `settings.py` (which already folds in `.env` and the
    environment through `python-dotenv`), then from `overrides.json` for the
    keys listed in `MODIFIABLE_SETTINGS`. Changes made at runtime through
    `update_setting` are written back to the overrides file and apply to
    sessions started afterwards.
    """

    def __init__(self, overrides_path: Path = None) -> None:
        """
        :param overrides_path: Optional path to the overrides file, defaults to OVERRIDES_JSON_PATH.
        """
        self._lock = threading.Lock()
        self._load_defaults()
        if overrides_path is not None:
            self.OVERRIDES_JSON_PATH = Path(overrides_path)
        self._load_overrides()

    def _load_defaults(self) -> None:
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def _coerce(self, key: str, value: Any) -> Any:
        """
        Converts `value` to the type of the current value of `key`.

        :raises ValueError: If the value cannot be converted.
        :raises TypeError: If the value cannot be converted.
        """
        current = getattr(self, key)
        if isinstance(current, bool):
            return str(value).lower() in ('true', '1', 't', 'yes', 'y')
        if isinstance(current, tuple):
            # JSON has no tuples; indicator lists also arrive as comma-separated strings
            items = value.split(',') if isinstance(value, str) else value
            return tuple(str(v).strip().lower() for v in items if str(v).strip())
        if isinstance(current, Path):
            return Path(value)
        if isinstance(current, (int, float)):
            new_value = type(current)(value)
            if new_value < 0:
                raise ValueError(f"{key} must not be negative")
            return new_value
        return value

    def _load_overrides(self) -> None:
        """Applies `overrides.json`, skipping unknown and non-modifiable keys."""
        if not self.OVERRIDES_JSON_PATH.exists():
            return

        try:
            overrides = json.loads(self.OVERRIDES_JSON_PATH.read_text())
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{self.OVERRIDES_JSON_PATH}': {e}")
            return

        log.info(f"Loading runtime configuration overrides from {self.OVERRIDES_JSON_PATH}")
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            if key not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue
            try:
                setattr(self, key, self._coerce(key, value))
            except (ValueError, TypeError) as e:
                log.warning(f"Invalid override for '{key}' ({value!r}): {e}. Keeping {getattr(self, key)!r}.")
                continue
            log.debug(f"Overridden setting: {key} = {getattr(self, key)!r}")

    def get(self, item: str, default: Any = None) -> Any:
        return getattr(self, item, default)

    def update_setting(self, key: str, value: Any) -> Tuple[bool, str]:
        """
        Thread-safe runtime change of a modifiable setting, persisted to overrides.json.

        :return: (success, message) for display.
        """
        with self._lock:
            if key not in self.MODIFIABLE_SETTINGS:
                message = f"Setting '{key}' is not modifiable."
                log.warning(f"Rejected config update: {message}")
                return False, message
            try:
                new_value = self._coerce(key, value)
            except (ValueError, TypeError) as e:
                message = f"Could not convert value '{value}' for key '{key}'. Error: {e}"
                log.error(f"Config update failed: {message}")
                return False, message

            setattr(self, key, new_value)
            self.save_overrides({k: getattr(self, k) for k in self.MODIFIABLE_SETTINGS})
            message = f"Setting '{key}' updated to '{new_value}'. New sessions will use it."
            log.info(message)
            return True, message

    def save_overrides(self, overrides_to_save: Dict[str, Any]) -> None:
        """
        Writes the modifiable subset of `overrides_to_save` to the overrides file.

        :param overrides_to_save: A dictionary of settings to persist.
        """
        filtered_overrides = {
            key: list(value) if isinstance(value, tuple) else str(value) if isinstance(value, Path) else value
            for key, value in overrides_to_save.items()
            if key in self.MODIFIABLE_SETTINGS
        }

        if not filtered_overrides:
            log.warning("No modifiable settings provided to save.")
            return

        try:
            self.OVERRIDES_JSON_PATH.write_text(json.dumps(filtered_overrides, indent=4, sort_keys=True))
            log.info(f"Configuration overrides saved to {self.OVERRIDES_JSON_PATH}")
        except IOError as e:
            log.error(f"Failed to write to overrides file '{self.OVERRIDES_JSON_PATH}': {e}")


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
