"""
Relay Configuration Manager

This module owns the on-disk config.yml:
- Generates a commented default file on first run
- Adds keys introduced by newer versions without touching user values

The round-trip loader keeps the user's comments and key order intact,
so upgrades never rewrite a hand-edited file from scratch.
"""

import logging
from pathlib import Path
from typing import Any, Dict

from ruamel.yaml import YAML

log = logging.getLogger(__name__)

# Set up ruamel.yaml in round-trip mode (preserves order and comments)
yaml = YAML(typ='rt')
yaml.preserve_quotes = True
yaml.encoding = "utf-8"

DEFAULT_CONFIG_CONTENT = r"""version: "1.0.0"
# TOPIC RELAY CONFIGURATION
# Environment variables RELAY_BOT_TOKEN, RELAY_WORKSPACE_CHAT_ID and
# RELAY_BOT_ID take precedence over the values below.

Telegram:
  token: ""
  api_base: "https://api.telegram.org"
  workspace_chat_id: null  # Forum supergroup holding one topic per user
  bot_id: null             # Messages sent by this id inside topics are never relayed back

# Album aggregation
Relay:
  quiet_period: 2.0     # Seconds without a new item before an album is flushed
  max_group_size: 10    # Albums are flushed immediately at this many items
  buffer_ttl: 60        # Storage expiry for album buffers (leak guard)
  watchdog_grace: 25.0  # Extra seconds a background flush may run after the reply

# Human verification (the challenge page itself is hosted elsewhere)
Verification:
  enabled: false
  public_base: ""  # e.g. https://relay.example.com, the link is {public_base}/verify?token=...
  token_ttl: 900

Storage:
  backend: "memory"  # Options: memory, json
  path: "data/relay_store.json"

Server:
  host: "0.0.0.0"
  port: 8080
  webhook_path: "/"
  secret_token: ""  # Matches setWebhook secret_token, empty disables the check

Options:
  debug_mode: false
"""


class ConfigManager:
    """
    Creates and upgrades the relay's config.yml.

    Example:
        >>> manager = ConfigManager("config.yml")
        >>> manager.initialize()
    """

    def __init__(self, config_path: str = "config.yml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Location of the YAML configuration file
        """
        self.config_path = Path(config_path)
        self.default_config = yaml.load(DEFAULT_CONFIG_CONTENT)

    def _merge_missing(self, target: Dict[str, Any], defaults: Dict[str, Any]) -> int:
        """
        Copy keys present in defaults but missing in target, recursively.

        Returns:
            Number of keys added
        """
        added = 0
        for key, value in defaults.items():
            if key not in target:
                target[key] = value
                added += 1
            elif isinstance(value, dict) and isinstance(target[key], dict):
                added += self._merge_missing(target[key], value)
        return added

    def initialize(self) -> bool:
        """
        Create config.yml if it does not exist, or add any missing keys.

        Returns:
            True if the file was created or changed
        """
        if not self.config_path.exists():
            log.info("Creating default configuration file...")
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                yaml.dump(self.default_config, f)
            log.info("Created %s", self.config_path)
            return True

        with open(self.config_path, "r", encoding="utf-8") as f:
            current = yaml.load(f) or {}

        added = self._merge_missing(current, self.default_config)
        if current.get("version") != self.default_config["version"]:
            current["version"] = self.default_config["version"]
            added += 1

        if not added:
            return False

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(current, f)
        log.info("Updated %s with %d new setting(s)", self.config_path, added)
        return True
