import datetime
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml
from colorama import Fore, init


CONFIG_FILE = "config.yml"


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log messages based on severity level."""

    def format(self, record):
        LOG_COLORS = {
            "DEBUG": Fore.CYAN,
            "INFO": Fore.GREEN,
            "WARNING": Fore.YELLOW,
            "ERROR": Fore.RED,
            "CRITICAL": Fore.RED + "\033[1m",
        }
        log_color = LOG_COLORS.get(record.levelname, Fore.WHITE)

        timestamp = datetime.datetime.fromtimestamp(
            record.created).strftime('%H:%M:%S')
        message = record.getMessage()

        # Display: [HH:MM:SS] LEVEL    [file:line] - message
        return f"{log_color}[{timestamp}] {record.levelname:<8} [{record.filename}:{record.lineno}] {Fore.RESET}- {message}"


def load_config(path: str = CONFIG_FILE) -> Dict[str, Any]:
    """
    Loads configuration from the YAML file without using logging.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Dict[str, Any]: Configuration data, empty if the file is missing or invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as file:
            data = yaml.safe_load(file)
    except (OSError, yaml.YAMLError):
        data = {}
    return data or {}


def setup_logging(debug_mode: bool = False, log_file: str = "relay.log") -> logging.Logger:
    """
    Configures logging: sets up a file handler and a console handler with colors.

    Args:
        debug_mode: Whether to enable debug logging to console
        log_file: File receiving the full debug log

    Returns:
        logging.Logger: Configured root logger
    """
    init(autoreset=True)

    # Remove any existing handlers to ensure basicConfig applies correctly
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)

    logging.basicConfig(
        level=logging.DEBUG,
        filename=log_file,
        filemode="a",
        format="[%(filename)s] %(levelname)s : %(message)s",
        encoding="utf-8",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug_mode else logging.INFO)
    console_handler.setFormatter(ColoredFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(console_handler)

    # Silence noisy third-party libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)

    return root_logger


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name)
    return value if isinstance(value, dict) else {}


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class RelaySettings:
    """Resolved runtime settings for the relay."""
    token: str = ""
    api_base: str = "https://api.telegram.org"
    workspace_chat_id: Optional[int] = None
    bot_id: Optional[int] = None

    quiet_period: float = 2.0
    max_group_size: int = 10
    buffer_ttl: int = 60
    watchdog_grace: float = 25.0

    verification_enabled: bool = False
    public_base: str = ""
    verification_ttl: int = 900

    storage_backend: str = "memory"
    storage_path: str = "data/relay_store.json"

    host: str = "0.0.0.0"
    port: int = 8080
    webhook_path: str = "/"
    secret_token: str = ""

    debug_mode: bool = False

    @classmethod
    def from_config(cls, config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> 'RelaySettings':
        """
        Build settings from a parsed config.yml, letting environment variables
        override the credentials.

        Args:
            config: Parsed configuration dictionary
            environ: Environment mapping (defaults to os.environ)

        Returns:
            RelaySettings instance
        """
        environ = os.environ if environ is None else environ
        telegram = _section(config, "Telegram")
        relay = _section(config, "Relay")
        verification = _section(config, "Verification")
        storage = _section(config, "Storage")
        server = _section(config, "Server")
        options = _section(config, "Options")

        defaults = cls()
        return cls(
            token=environ.get("RELAY_BOT_TOKEN") or telegram.get("token") or "",
            api_base=telegram.get("api_base") or defaults.api_base,
            workspace_chat_id=_optional_int(
                environ.get("RELAY_WORKSPACE_CHAT_ID") or telegram.get("workspace_chat_id")
            ),
            bot_id=_optional_int(environ.get("RELAY_BOT_ID") or telegram.get("bot_id")),
            quiet_period=float(relay.get("quiet_period", defaults.quiet_period)),
            max_group_size=int(relay.get("max_group_size", defaults.max_group_size)),
            buffer_ttl=int(relay.get("buffer_ttl", defaults.buffer_ttl)),
            watchdog_grace=float(relay.get("watchdog_grace", defaults.watchdog_grace)),
            verification_enabled=bool(verification.get("enabled", False)),
            public_base=verification.get("public_base") or "",
            verification_ttl=int(verification.get("token_ttl", defaults.verification_ttl)),
            storage_backend=storage.get("backend", defaults.storage_backend),
            storage_path=storage.get("path", defaults.storage_path),
            host=server.get("host", defaults.host),
            port=int(server.get("port", defaults.port)),
            webhook_path=server.get("webhook_path", defaults.webhook_path),
            secret_token=server.get("secret_token") or "",
            debug_mode=bool(options.get("debug_mode", False)),
        )
