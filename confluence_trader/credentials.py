"""Broker credentials: presence check at startup.

Priority order:
1. Environment variables: BROKER_APP_KEY, BROKER_APP_SECRET, BROKER_ACCOUNT
2. Config file: ~/.confluence_trader.json or custom path via ENV BROKER_CONFIG_PATH

Missing credentials are fatal; the process must not start a cycle without them.
"""
import json
import os
from pathlib import Path
from typing import Mapping, NamedTuple, Optional

from .config import ConfigurationError

ENV_KEYS = {
    "app_key": "BROKER_APP_KEY",
    "app_secret": "BROKER_APP_SECRET",
    "account": "BROKER_ACCOUNT",
}


class BrokerCredentials(NamedTuple):
    app_key: str
    app_secret: str
    account: str

    def __repr__(self) -> str:
        return f"BrokerCredentials(app_key=***, app_secret=***, account={self.masked_account})"

    @property
    def masked_account(self) -> str:
        return f"{self.account[:2]}****{self.account[-2:]}" if len(self.account) > 4 else "****"


def load_credentials(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BrokerCredentials:
    """Load broker credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks BROKER_CONFIG_PATH env var, then ~/.confluence_trader.json
        environ: Environment mapping, defaults to os.environ

    Returns:
        BrokerCredentials

    Raises:
        ConfigurationError: If credentials are missing, incomplete or unreadable
    """
    environ = os.environ if environ is None else environ
    values = {field: environ.get(var) for field, var in ENV_KEYS.items()}

    if not all(values.values()):
        if config_path is None:
            config_path = environ.get("BROKER_CONFIG_PATH")
        if config_path is None:
            config_path = str(Path.home() / ".confluence_trader.json")

        config_file = Path(config_path)
        if config_file.exists():
            try:
                with config_file.open("r", encoding="utf-8") as f:
                    cfg = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Failed to load credentials from {config_path}: {e}") from e
            if not isinstance(cfg, dict):
                raise ConfigurationError(f"Credentials file must hold a JSON object: {config_path}")
            for field in ENV_KEYS:
                values[field] = values[field] or cfg.get(field)

    missing = [ENV_KEYS[field] for field, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing broker credentials: {', '.join(missing)}. Provide via:\n"
            "  - Environment: BROKER_APP_KEY, BROKER_APP_SECRET, BROKER_ACCOUNT\n"
            f"  - Config file: {config_path}\n"
            "  - BROKER_CONFIG_PATH env var to override config location"
        )

    return BrokerCredentials(**{field: str(value) for field, value in values.items()})
