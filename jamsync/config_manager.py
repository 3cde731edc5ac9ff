"""
Configuration management using database storage.

Provides access to configuration values with defaults and type conversion.
The CONFIG_SCHEMA provides rich metadata for building user-friendly configuration UIs.
"""

import logging
from typing import Any, Dict, List, Optional

from .database import ConfigRepository, Database

# Configuration groups define the logical sections in the config UI
CONFIG_GROUPS = {
    "live": {"label": "Live Display", "order": 1},
    "games": {"label": "Stage Games", "order": 2},
    "queue": {"label": "Band Queue", "order": 3},
    "sync": {"label": "Synchronization", "order": 4},
    "security": {"label": "Security", "order": 5},
}

# Schema defining metadata for each editable configuration key
CONFIG_SCHEMA = {
    # Live Display
    "default_band_duration_minutes": {
        "group": "live",
        "label": "Default Slot Length",
        "description": "Minutes on stage for a new band. Fractions are allowed (6.5 = 6:30).",
        "control": "number",
        "min": 1,
        "max": 60,
        "step": 0.5,
    },
    "urgent_threshold_seconds": {
        "group": "live",
        "label": "Urgent Countdown",
        "description": "When this many seconds remain, the stage display switches to the full-screen countdown.",
        "control": "slider",
        "min": 5,
        "max": 120,
        "step": 5,
        "display_format": "seconds",
    },
    # Stage Games
    "game_default_duration_seconds": {
        "group": "games",
        "label": "Default Game Length",
        "description": "Preselected duration when a game is opened.",
        "control": "select",
        "options_provider": "get_game_durations",
    },
    "game_duration_options": {
        "group": "games",
        "label": "Game Length Choices",
        "description": "Comma separated durations, in seconds, offered before a game starts.",
        "control": "text",
        "placeholder": "30,60,120,180",
    },
    "game_add_time_seconds": {
        "group": "games",
        "label": "Extra Time Step",
        "description": "Seconds added by the extra time button during a game.",
        "control": "slider",
        "min": 5,
        "max": 120,
        "step": 5,
        "display_format": "seconds",
    },
    # Band Queue
    "min_active_users": {
        "group": "queue",
        "label": "Minimum Active Musicians",
        "description": "Generated bands need at least this many active musicians on the roster.",
        "control": "slider",
        "min": 1,
        "max": 10,
        "step": 1,
    },
    "max_queue_warning": {
        "group": "queue",
        "label": "Long Queue Warning",
        "description": "Ask for confirmation before generating a band when the queue is this long.",
        "control": "slider",
        "min": 1,
        "max": 50,
        "step": 1,
    },
    # Synchronization
    "sync_poll_interval_ms": {
        "group": "sync",
        "label": "Change Feed Interval",
        "description": "How often the shared store is checked for changes made by other stations. Takes effect on restart.",
        "control": "slider",
        "min": 100,
        "max": 5000,
        "step": 100,
        "display_format": "milliseconds",
    },
    # Security
    "operator_pin": {
        "group": "security",
        "label": "Operator PIN",
        "description": "PIN code required to access the admin console.",
        "control": "password",
    },
}


class ConfigManager:
    """Manages configuration stored in database."""

    DEFAULTS = {
        "default_band_duration_minutes": "6",
        "urgent_threshold_seconds": "30",
        "game_default_duration_seconds": "60",
        "game_duration_options": "30,60,120,180",
        "game_add_time_seconds": "30",
        "min_active_users": "3",
        "max_queue_warning": "15",
        "sync_poll_interval_ms": "500",
        "operator_pin": "1234",
    }

    def __init__(self, database: Database):
        """
        Initialize ConfigManager.

        Args:
            database: Database instance
        """
        self.database = database
        self.repository = ConfigRepository(database)
        self.logger = logging.getLogger(__name__)
        self.repository.initialize_defaults(self.DEFAULTS)

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found (uses DEFAULTS if None)

        Returns:
            Configuration value as string, or None if not found
        """
        if default is None:
            default = self.DEFAULTS.get(key)

        entry = self.repository.get(key)
        if entry:
            return entry.value if entry.value else default
        return default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s", key, value)
            return default

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """Get configuration value as boolean."""
        value = self.get(key)
        if value is None or value == "":
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def get_int_list(self, key: str, default: Optional[List[int]] = None) -> List[int]:
        """Get a comma separated configuration value as a list of positive integers."""
        value = self.get(key)
        if not value:
            return list(default or [])
        try:
            items = [int(part) for part in value.split(",") if part.strip()]
        except ValueError:
            self.logger.warning("Invalid integer list for %s: %s", key, value)
            return list(default or [])
        return [item for item in items if item > 0]

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (will be converted to string)

        Returns:
            True if successful

        Raises:
            ValueError: If the value does not fit the key's schema
        """
        self._validate(key, str(value))
        return self.repository.set(key, str(value))

    def _validate(self, key: str, value: str):
        key_def = CONFIG_SCHEMA.get(key)
        if not key_def:
            return
        if key_def["control"] in ("slider", "number"):
            try:
                number = float(value)
            except ValueError:
                raise ValueError(f"{key} must be a number, got {value!r}") from None
            if not key_def["min"] <= number <= key_def["max"]:
                raise ValueError(f"{key} must be between {key_def['min']} and {key_def['max']}")
        elif key == "game_duration_options":
            parts = [part.strip() for part in value.split(",") if part.strip()]
            if not parts or not all(part.isdigit() and int(part) > 0 for part in parts):
                raise ValueError("game_duration_options must list positive whole seconds")

    def get_all(self) -> dict:
        """
        Get all configuration values.

        Returns:
            Dictionary of all configuration key-value pairs
        """
        entries = self.repository.get_all()
        config = {entry.key: entry.value for entry in entries}

        result = self.DEFAULTS.copy()
        result.update(config)
        return result

    def get_config_schema(self) -> Dict[str, dict]:
        """
        Get the configuration schema with resolved dynamic options.

        Returns:
            Dictionary mapping config keys to their schema definitions,
            with any dynamic options (options_provider) resolved to actual values.
        """
        schema = {}

        for key, key_def in CONFIG_SCHEMA.items():
            key_schema: Dict[str, Any] = dict(key_def)

            if "options_provider" in key_schema:
                provider = key_schema.pop("options_provider")
                key_schema["options"] = self._resolve_options(provider)

            schema[key] = key_schema

        return schema

    def _resolve_options(self, provider: str) -> List[dict]:
        """
        Resolve dynamic options from a provider name.

        Args:
            provider: Name of the provider (e.g., 'get_game_durations')

        Returns:
            List of option dictionaries with 'value' and 'label' keys
        """
        if provider == "get_game_durations":
            from .display import format_duration_choice

            durations = self.get_int_list("game_duration_options", [30, 60, 120, 180])
            return [
                {"value": str(seconds), "label": format_duration_choice(seconds)}
                for seconds in durations
            ]

        self.logger.warning("Unknown options provider: %s", provider)
        return []

    def get_config_groups(self) -> Dict[str, dict]:
        """Get the configuration group definitions."""
        return CONFIG_GROUPS.copy()

    def get_full_config(self) -> dict:
        """
        Get complete configuration data for the UI.

        Returns:
            Dictionary with 'values', 'schema', and 'groups' keys.
        """
        values = self.get_all()
        values.pop("operator_pin", None)
        return {
            "values": values,
            "schema": self.get_config_schema(),
            "groups": self.get_config_groups(),
        }
