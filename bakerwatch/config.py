"""
Monitoring configuration.

Every tunable of the engine lives on MonitorConfig and is passed explicitly
into the polling loop. from_env() reads the process environment (and a .env
file, when present) for operators who drive the tool from compose files.
"""

import math
import os
from dataclasses import dataclass, replace
from typing import Dict, Optional
from urllib.parse import urlsplit

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

# Public RPC endpoints used as the reference network head
NETWORKS: Dict[str, str] = {
    "ghostnet": "https://ghostnet.teztnets.xyz",
    "mainnet": "https://mainnet.api.tez.ie",
}

DEFAULT_MAX_LAG = 2
DEFAULT_HEALTH_MAX_LAG = 5


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return parse_count(raw, name)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"Invalid {name} '{raw}'. Must be a number") from None
    if not math.isfinite(value) or value < 0:
        raise ConfigError(f"Invalid {name} '{raw}'. Must be a finite, non-negative number")
    return value


def parse_count(raw: str, name: str = "value") -> int:
    """Parse a non-negative integer given as text"""
    text = raw.strip()
    # str.isdigit() also accepts digits int() cannot parse, such as '²'
    if not (text.isascii() and text.isdigit()):
        raise ConfigError(f"Invalid {name} '{raw}'. Must be a positive integer")
    return int(text)


def _check_url(name: str, url: str) -> None:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigError(f"Invalid {name} '{url}'. Must be an http(s) URL")


@dataclass
class MonitorConfig:
    network: str = "ghostnet"
    max_lag: int = DEFAULT_MAX_LAG
    poll_interval: float = 30.0
    required_consecutive: int = 3
    max_rounds: int = 120
    min_peers: int = 5
    min_free_gb: int = 5
    rpc_url: str = "http://127.0.0.1:8732"
    fetch_timeout: float = 10.0
    data_dir: str = "/var/lib/tezos"
    node_process: str = "tezos-node"
    baker_process: str = "tezos-baker"
    endorser_process: str = "tezos-endorser"
    baker_alias: str = "baker"
    client_binary: str = "tezos-client"
    log_dir: str = "logs"
    network_url: Optional[str] = None

    @property
    def remote_url(self) -> str:
        """Reference endpoint for the configured network"""
        return self.network_url or NETWORKS[self.network]

    def validate(self) -> "MonitorConfig":
        # NETWORK_RPC_URL only replaces the endpoint of a known network
        if self.network not in NETWORKS:
            names = "' or '".join(sorted(NETWORKS))
            raise ConfigError(f"Invalid network '{self.network}'. Use '{names}'")
        _check_url("rpc_url", self.rpc_url)
        if self.network_url:
            _check_url("network_url", self.network_url)
        for name in ("max_lag", "max_rounds", "min_peers", "min_free_gb"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ConfigError(f"Invalid {name} '{value}'. Must be a positive integer")
        if self.required_consecutive < 1:
            raise ConfigError("required_consecutive must be at least 1")
        if self.max_rounds < 1:
            raise ConfigError("max_rounds must be at least 1")
        for name in ("poll_interval", "fetch_timeout"):
            if not math.isfinite(getattr(self, name)):
                raise ConfigError(f"Invalid {name} '{getattr(self, name)}'. Must be finite")
        if self.poll_interval < 0 or self.fetch_timeout <= 0:
            raise ConfigError("poll_interval and fetch_timeout must be positive")
        return self

    def with_overrides(self, **changes) -> "MonitorConfig":
        """Copy with the given fields replaced, skipping None values"""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes).validate()

    @classmethod
    def from_env(cls, default_max_lag: int = DEFAULT_MAX_LAG) -> "MonitorConfig":
        load_dotenv(find_dotenv(usecwd=True))
        return cls(
            network=os.getenv("TEZOS_NETWORK", "ghostnet"),
            max_lag=_int_env("MAX_HEAD_LAG", default_max_lag),
            poll_interval=_float_env("SYNC_CHECK_INTERVAL", 30.0),
            required_consecutive=_int_env("SYNC_REQUIRED_CONSECUTIVE", 3),
            max_rounds=_int_env("SYNC_MAX_CHECKS", 120),
            min_peers=_int_env("MIN_PEER_COUNT", 5),
            min_free_gb=_int_env("MIN_FREE_DISK_GB", 5),
            rpc_url=os.getenv("TEZOS_RPC_URL", "http://127.0.0.1:8732"),
            fetch_timeout=_float_env("RPC_TIMEOUT", 10.0),
            data_dir=os.getenv("TEZOS_DATA_DIR", "/var/lib/tezos"),
            node_process=os.getenv("NODE_PROCESS", "tezos-node"),
            baker_process=os.getenv("BAKER_PROCESS", "tezos-baker"),
            endorser_process=os.getenv("ENDORSER_PROCESS", "tezos-endorser"),
            baker_alias=os.getenv("BAKER_ALIAS", "baker"),
            client_binary=os.getenv("TEZOS_CLIENT", "tezos-client"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            network_url=os.getenv("NETWORK_RPC_URL") or None,
        )
