import os
from typing import Dict, Any

from errors.exceptions import ConfigurationError

# Protocol defaults (lovelace / slots / seconds)
DEFAULT_MINT_PRICE = 27_000_000
FEE_BUFFER = 2_000_000
MIN_UTXO_LOVELACE = 1_400_000
VALIDITY_HORIZON_SLOTS = 10_000
POLL_INTERVAL = 60
COMMAND_TIMEOUT = int(os.environ.get("COMMAND_TIMEOUT", "60"))
HTTP_TIMEOUT = int(os.environ.get("HTTP_TIMEOUT", "15"))
MAX_POLICY_PAGES = 100
MAX_UTXO_PAGES = 50
DEFAULT_STATE_FILE = "mint.state"
DEFAULT_FIXTURE_FILE = "mock_deposits.json"
DEFAULT_ASSET_PREFIX = "Token"
UNKNOWN_SENDER = "unknown"

BLOCKFROST_URLS = {
    "mainnet": "https://cardano-mainnet.blockfrost.io/api/v0",
    "preprod": "https://cardano-preprod.blockfrost.io/api/v0",
    "preview": "https://cardano-preview.blockfrost.io/api/v0",
}

NETWORKS = ("mainnet", "preprod", "preview")
DEPOSIT_SOURCES = ("blockfrost", "fixture")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


class MinterConfig:
    """Mint engine configuration, read from the environment.

    Keyword overrides (lower or upper case attribute names) take precedence
    over environment values so the CLI and tests can build a config without
    touching ``os.environ``.
    """

    def __init__(self, **overrides):
        # Watched address and minting policy
        self.MONITOR_ADDRESS = os.getenv("MONITOR_ADDRESS", "")
        self.POLICY_ID = os.getenv("POLICY_ID", "")
        self.SCRIPT_FILE = os.getenv("SCRIPT_FILE", "")
        self.SIGNING_KEY_FILE = os.getenv("SIGNING_KEY_FILE", "")
        self.ASSET_NAME_PREFIX = os.getenv("ASSET_NAME_PREFIX", DEFAULT_ASSET_PREFIX)
        self.MINT_PRICE = _env_int("MINT_PRICE", DEFAULT_MINT_PRICE)
        self.FEE_BUFFER = _env_int("FEE_BUFFER", FEE_BUFFER)
        self.VALIDITY_HORIZON = _env_int("VALIDITY_HORIZON", VALIDITY_HORIZON_SLOTS)

        # Durable state
        self.STATE_FILE = os.getenv("STATE_FILE") or DEFAULT_STATE_FILE
        self.WORK_DIR = os.getenv("WORK_DIR", "./work")

        # Network / node
        self.CARDANO_NETWORK = os.getenv("CARDANO_NETWORK") or "mainnet"
        self.TESTNET_MAGIC = os.getenv("TESTNET_MAGIC", "")
        self.CARDANO_NODE_SOCKET_PATH = os.getenv("CARDANO_NODE_SOCKET_PATH", "")
        self.CARDANO_CLI = os.getenv("CARDANO_CLI", "cardano-cli")

        # Deposit source
        self.DEPOSIT_SOURCE = os.getenv("DEPOSIT_SOURCE", "blockfrost")
        self.BLOCKFROST_API_KEY = os.getenv("BLOCKFROST_API_KEY", "")
        self.FIXTURE_FILE = os.getenv("FIXTURE_FILE", DEFAULT_FIXTURE_FILE)

        # Optional JSON file with extra CIP-25 fields (image, mediaType, ...)
        self.METADATA_TEMPLATE_FILE = os.getenv("METADATA_TEMPLATE_FILE", "")

        # Scheduling and timeouts
        self.POLL_INTERVAL = _env_int("POLL_INTERVAL", POLL_INTERVAL)
        self.COMMAND_TIMEOUT = _env_int("COMMAND_TIMEOUT", COMMAND_TIMEOUT)
        self.HTTP_TIMEOUT = _env_int("HTTP_TIMEOUT", HTTP_TIMEOUT)

        # Ambient
        self.DISCORD_WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE = os.getenv("LOG_FILE", "")
        self.API_PORT = _env_int("API_PORT", 0)

        for key, value in overrides.items():
            if value is None:
                continue
            attr = key.upper()
            if not hasattr(self, attr):
                raise ConfigurationError(f"Unknown configuration key: {key}")
            setattr(self, attr, value)

        if self.CARDANO_NETWORK != "mainnet" and not self.TESTNET_MAGIC:
            self.TESTNET_MAGIC = "2" if self.CARDANO_NETWORK == "preview" else "1"

    @property
    def required_lovelace(self) -> int:
        return self.MINT_PRICE + self.FEE_BUFFER

    @property
    def blockfrost_url(self) -> str:
        return BLOCKFROST_URLS[self.CARDANO_NETWORK]

    def validate(self):
        """Raise ConfigurationError for anything the engine cannot run without"""
        missing = [
            name for name in ("MONITOR_ADDRESS", "POLICY_ID", "SCRIPT_FILE")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        if self.CARDANO_NETWORK not in NETWORKS:
            raise ConfigurationError(
                f"CARDANO_NETWORK must be one of: {', '.join(NETWORKS)}"
            )
        if self.DEPOSIT_SOURCE not in DEPOSIT_SOURCES:
            raise ConfigurationError(
                f"DEPOSIT_SOURCE must be one of: {', '.join(DEPOSIT_SOURCES)}"
            )
        if self.DEPOSIT_SOURCE == "blockfrost" and not self.BLOCKFROST_API_KEY:
            raise ConfigurationError("BLOCKFROST_API_KEY is required for the blockfrost deposit source")
        if self.MINT_PRICE <= 0:
            raise ConfigurationError("MINT_PRICE must be positive")
        if self.FEE_BUFFER < 0:
            raise ConfigurationError("FEE_BUFFER must not be negative")
        if self.POLL_INTERVAL <= 0:
            raise ConfigurationError("POLL_INTERVAL must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary with secrets masked"""
        return {
            "monitor_address": self.MONITOR_ADDRESS,
            "policy_id": self.POLICY_ID,
            "script_file": self.SCRIPT_FILE,
            "asset_name_prefix": self.ASSET_NAME_PREFIX,
            "mint_price": self.MINT_PRICE,
            "fee_buffer": self.FEE_BUFFER,
            "validity_horizon": self.VALIDITY_HORIZON,
            "state_file": self.STATE_FILE,
            "network": self.CARDANO_NETWORK,
            "testnet_magic": self.TESTNET_MAGIC,
            "deposit_source": self.DEPOSIT_SOURCE,
            "blockfrost_key_configured": bool(self.BLOCKFROST_API_KEY),
            "webhook_configured": bool(self.DISCORD_WEBHOOK_URL),
            "poll_interval": self.POLL_INTERVAL,
        }
