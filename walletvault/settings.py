"""
User preferences stored next to the vault.

The core only consults two of them: the vault-mode flag (encryption_disabled)
and the gas limit buffer. The rest belong to the outer surfaces and are
carried through unchanged.
"""

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from . import config
from .errors import RecordCorrupt
from .utils import write_json_atomic

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Represents the contents of settings.json."""
    currency: str = config.DEFAULT_SETTINGS["currency"]
    default_network: str = config.DEFAULT_SETTINGS["default_network"]
    gas_limit_buffer: str = config.DEFAULT_SETTINGS["gas_limit_buffer"]
    backup_method: Optional[str] = None
    rclone_remote: Optional[str] = None
    encryption_disabled: bool = False
    saved_tokens: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Settings':
        """Create from dictionary, filling missing keys with defaults."""
        known = {f.name for f in fields(cls)}
        merged = copy.deepcopy(config.DEFAULT_SETTINGS)
        merged.update({k: v for k, v in data.items() if k in known})
        if not isinstance(merged.get("saved_tokens"), list):
            merged["saved_tokens"] = []
        return cls(**merged)

    def gas_buffer(self) -> int:
        """Return the gas limit buffer as an integer, 0 when unset or invalid."""
        try:
            return max(int(str(self.gas_limit_buffer).strip() or "0"), 0)
        except ValueError:
            logger.warning(f"Ignoring invalid gas limit buffer {self.gas_limit_buffer!r}")
            return 0

    def tokens_for(self, network: str) -> List[Dict[str, Any]]:
        """Predefined tokens followed by the user's saved tokens for a network."""
        tokens = list(config.PREDEFINED_TOKENS.get(network, []))
        tokens.extend(t for t in self.saved_tokens if t.get("network") == network)
        return tokens


class SettingsStore:
    """Loads and saves settings.json."""

    def __init__(self, filepath: str):
        self.filepath = filepath

    def load(self) -> Settings:
        """
        Read settings from disk.

        Returns:
            Defaults when the file does not exist yet

        Raises:
            RecordCorrupt: If the file exists but is not a JSON object
        """
        if not os.path.exists(self.filepath):
            return Settings()
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise RecordCorrupt(f"Cannot read settings file {self.filepath}: {e}") from e
        if not isinstance(data, dict):
            raise RecordCorrupt(f"Settings file {self.filepath} does not hold an object")
        return Settings.from_dict(data)

    def save(self, settings: Settings) -> None:
        """Write settings to disk atomically."""
        write_json_atomic(self.filepath, settings.to_dict())

    def add_token(self, settings: Settings, token: Dict[str, Any]) -> Settings:
        """Append a custom token and persist."""
        for key in ("symbol", "address", "network", "decimals"):
            if key not in token:
                raise ValueError(f"Token is missing '{key}'")
        if token["network"] not in config.NETWORKS:
            raise ValueError(f"Unknown network: {token['network']}")
        settings.saved_tokens.append(dict(token))
        self.save(settings)
        return settings

    def remove_token(self, settings: Settings, index: int) -> Dict[str, Any]:
        """Remove a saved token by position and persist."""
        if index < 0 or index >= len(settings.saved_tokens):
            raise IndexError("saved token index out of range")
        removed = settings.saved_tokens.pop(index)
        self.save(settings)
        return removed
