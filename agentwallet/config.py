"""
Agent Wallet Configuration
==========================

Settings for the policy registry, the acting PKP and the delegatee.

Philosophy:
    - Sensible defaults (points at the public policy registry)
    - Environment variables for deployment, files for sharing
    - Explicit arguments always win
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml

from .crypto import is_address
from .errors import ConfigurationError

Network = Literal["datil-dev", "datil-test", "datil", "local"]

NETWORKS: Dict[str, str] = {
    "datil-dev": "Development network",
    "datil-test": "Pre-production test network",
    "datil": "Production network",
    "local": "In-process ledger",
}

DEFAULT_RPC_URL = "https://yellowstone-rpc.litprotocol.com/"
DEFAULT_POLICY_STORE_ADDRESS = "0xD78e1C1183A29794A092dDA7dB526A91FdE36020"
DEFAULT_CHAIN_ID = 175188


@dataclass(frozen=True)
class AgentWalletConfig:
    """
    Immutable agent settings.

    ``policy_store_address`` may be empty: the agent still runs, but every
    registry call reports that the tool policy manager is not initialized.
    """

    # === Identity ===
    pkp_token_id: Optional[int] = None
    pkp_address: Optional[str] = None
    delegatee_address: Optional[str] = None

    # === Ledger ===
    network: Network = "datil-dev"
    rpc_url: str = DEFAULT_RPC_URL
    policy_store_address: Optional[str] = DEFAULT_POLICY_STORE_ADDRESS
    chain_id: int = DEFAULT_CHAIN_ID

    # === Audit ===
    log_file: Optional[str] = None

    # === Developer Experience ===
    debug: bool = False

    def __post_init__(self):
        """Validate configuration"""
        if self.network not in NETWORKS:
            raise ConfigurationError(
                f"Invalid network: {self.network}. "
                f"Must be one of: {', '.join(NETWORKS)}"
            )
        for name in ("pkp_address", "delegatee_address", "policy_store_address"):
            value = getattr(self, name)
            if value and not is_address(value):
                raise ConfigurationError(f"{name} is not a valid address: {value!r}")
        if self.pkp_token_id is not None and self.pkp_token_id < 0:
            raise ConfigurationError("pkp_token_id must be non-negative")

    @property
    def has_policy_store(self) -> bool:
        return bool(self.policy_store_address)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls) -> 'AgentWalletConfig':
        """Create configuration from AW_* environment variables"""
        token_id = os.getenv("AW_PKP_TOKEN_ID")
        try:
            return cls(
                pkp_token_id=int(token_id) if token_id else None,
                pkp_address=os.getenv("AW_PKP_ADDRESS"),
                delegatee_address=os.getenv("AW_DELEGATEE_ADDRESS"),
                network=os.getenv("AW_NETWORK", "datil-dev"),  # type: ignore
                rpc_url=os.getenv("AW_RPC_URL", DEFAULT_RPC_URL),
                policy_store_address=os.getenv("AW_POLICY_STORE_ADDRESS", DEFAULT_POLICY_STORE_ADDRESS),
                chain_id=int(os.getenv("AW_CHAIN_ID", str(DEFAULT_CHAIN_ID))),
                log_file=os.getenv("AW_LOG_FILE"),
                debug=os.getenv("AW_DEBUG", "false").lower() == "true",
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}")

    @classmethod
    def from_file(cls, path: str) -> 'AgentWalletConfig':
        """Load configuration from a JSON or YAML file"""
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {path}")

        with open(config_file, 'r') as f:
            if config_file.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {path}")

        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)


# Global configuration instance
_global_config: Optional[AgentWalletConfig] = None


def configure(**kwargs) -> AgentWalletConfig:
    """Configure agentwallet; explicit arguments override the environment"""
    global _global_config

    config_dict = AgentWalletConfig.from_env().to_dict()
    config_dict.update(kwargs)

    _global_config = AgentWalletConfig(**config_dict)
    return _global_config


def get_config() -> AgentWalletConfig:
    """Get current configuration, creating default if needed"""
    global _global_config

    if _global_config is None:
        _global_config = configure()

    return _global_config
