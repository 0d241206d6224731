"""
Configuration management for the voice terminal.

Loads settings from ~/.voxterm/config.toml with fallback to defaults.
The audio pipeline reads these once per call; edits take effect on the
next call.
"""
import copy
import logging
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".voxterm" / "config.toml"

# Default configuration values
DEFAULT_CONFIG = {
    "audio": {
        "mic_device": "default",
        "spkr_device": "default",
        "full_duplex": False,
        "card_sample_rate": 48000,
        "internal_sample_rate": 16000,
        "network_sample_rate": 8000,
        "block_ms": 20,
        "rx_fifo_ms": 1000,
        "rx_prebuffer_ms": 160,
        "connect_sound": ""
    },
    "vox": {
        "enabled": False,
        "threshold": -30,
        "delay": 1000
    },
    "ptt": {
        "hotkey": "<ctrl>+<alt>+<space>",
        "toggle_mode": False
    },
    "call": {
        "accept_incoming": False,
        "echo_connect_delay": 0.5
    },
    "ui": {
        "verbose": False,
        "quiet": False,
        "log_file": "voxterm.log"
    }
}


@dataclass
class TerminalConfig:
    """Main configuration class for the voice terminal."""
    audio: Dict[str, Any]
    vox: Dict[str, Any]
    ptt: Dict[str, Any]
    call: Dict[str, Any]
    ui: Dict[str, Any]

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'TerminalConfig':
        """
        Load configuration from file with fallback to defaults.

        Args:
            config_path: Path to config file (defaults to ~/.voxterm/config.toml)

        Returns:
            TerminalConfig instance with merged settings
        """
        config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        config_data = copy.deepcopy(DEFAULT_CONFIG)

        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    user_config = tomllib.load(f)

                config_data = _deep_merge(config_data, user_config)
                logger.info(f"Loaded configuration from {config_path}")

            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")
                logger.info("Using default configuration")
        else:
            logger.info(f"Config file not found at {config_path}, using defaults")

            try:
                config_path.parent.mkdir(parents=True, exist_ok=True)
                _create_example_config(config_path)
            except OSError as e:
                logger.warning(f"Could not create example config: {e}")

        # Unknown top-level sections are ignored rather than breaking startup
        return cls(**{key: config_data[key] for key in DEFAULT_CONFIG})

    def save(self, config_path: Optional[str] = None) -> bool:
        """
        Save current configuration to file.

        Args:
            config_path: Path to save config (defaults to ~/.voxterm/config.toml)

        Returns:
            True if saved successfully, False otherwise
        """
        config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w") as f:
                f.write(_dict_to_toml(asdict(self)))

            logger.info(f"Configuration saved to {config_path}")
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {config_path}: {e}")
            return False


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _create_example_config(config_path: Path) -> None:
    """Create an example configuration file."""
    header = """# VoxTerm Configuration
# This file was auto-generated with default values.
# Audio settings are read when a call starts.

"""

    with open(config_path, "w") as f:
        f.write(header + _dict_to_toml(DEFAULT_CONFIG))

    logger.info(f"Created example config at {config_path}")


def _dict_to_toml(data: Dict[str, Any]) -> str:
    """Convert a two-level dictionary to TOML (tables of scalars only)."""
    lines = []

    for key, value in data.items():
        if isinstance(value, dict):
            if lines:
                lines.append("")
            lines.append(f"[{key}]")
            lines.append(_dict_to_toml(value))
        elif isinstance(value, str):
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{key} = "{escaped}"')
        elif isinstance(value, bool):
            lines.append(f'{key} = {str(value).lower()}')
        elif isinstance(value, (int, float)):
            lines.append(f'{key} = {value}')
        else:
            lines.append(f'{key} = "{str(value)}"')

    return "\n".join(lines)


# Convenience function
def load_config(config_path: Optional[str] = None) -> TerminalConfig:
    """Load terminal configuration from file or defaults."""
    return TerminalConfig.load(config_path)
