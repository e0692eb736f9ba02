"""Chain selection and identifier settings read from the environment."""

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from dotenv import load_dotenv

ETHERSCAN_V2_URL = "https://api.etherscan.io/v2/api"

KNOWN_CHAINS = {
    1: "mainnet",
    10: "optimism",
    56: "bsc",
    137: "polygon",
    8453: "base",
    42161: "arbitrum",
    43114: "avalanche",
    59144: "linea",
    534352: "scroll",
    11155111: "sepolia",
    84532: "base-sepolia",
    31337: "anvil",
}

# chains the Etherscan V2 API serves
ETHERSCAN_CHAINS = {1, 10, 56, 137, 8453, 42161, 43114, 59144, 534352, 11155111, 84532}


class ConfigError(RuntimeError):
    """One or more configuration problems, reported together."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("invalid identifier configuration: " + "; ".join(self.errors))


@dataclass(frozen=True)
class Chain:
    id: int
    name: str

    @classmethod
    def from_id(cls, chain_id: int) -> "Chain":
        return cls(chain_id, KNOWN_CHAINS.get(chain_id, f"chain-{chain_id}"))

    @classmethod
    def parse(cls, value: "str | int | Chain") -> "Chain":
        if isinstance(value, Chain):
            return value
        if isinstance(value, int):
            return cls.from_id(value)
        v = value.strip().lower()
        if v.isdigit():
            return cls.from_id(int(v))
        for cid, name in KNOWN_CHAINS.items():
            if name == v:
                return cls(cid, name)
        raise ValueError(f"unknown chain: {value}")

    @property
    def has_etherscan(self) -> bool:
        return self.id in ETHERSCAN_CHAINS


@dataclass
class Config:
    chain: Chain = field(default_factory=lambda: Chain.parse("base"))
    etherscan_api_key: str | None = None
    etherscan_api_url: str | None = None
    # chain the key was explicitly configured for, if any
    etherscan_chain: Chain | None = None
    etherscan_timeout: float = 30.0
    etherscan_max_retries: int = 3
    offline: bool = False
    signatures_cache_dir: str | None = None
    artifacts_dir: str | None = None
    rpc_urls: list[str] = field(default_factory=lambda: ["https://mainnet.base.org"])

    def validate(self) -> list[str]:
        errors = []
        if self.etherscan_api_key is not None and not self.etherscan_api_key.strip():
            errors.append("ETHERSCAN_API_KEY is empty")
        if self.etherscan_api_url:
            parsed = urlparse(self.etherscan_api_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(f"ETHERSCAN_API_URL is not an http(s) URL: {self.etherscan_api_url}")
        if self.etherscan_timeout <= 0:
            errors.append(f"ETHERSCAN_TIMEOUT must be positive, got {self.etherscan_timeout}")
        if self.etherscan_max_retries < 0:
            errors.append(f"ETHERSCAN_MAX_RETRIES must be >= 0, got {self.etherscan_max_retries}")
        return errors

    @classmethod
    def from_env(cls) -> "Config":
        """Build settings from the environment (and ``.env``).

        Malformed values are collected and raised as one ``ConfigError``.
        """
        load_dotenv()
        errors = []

        def _chain(var: str, default: str | None) -> Chain | None:
            raw = os.getenv(var, default)
            if not raw:
                return None
            try:
                return Chain.parse(raw)
            except ValueError as e:
                errors.append(f"{var}: {e}")
                return None

        def _number(var: str, default: str, conv):
            raw = os.getenv(var, default)
            try:
                return conv(raw)
            except ValueError:
                errors.append(f"{var} is not a number: {raw}")
                return conv(default)

        chain = _chain("CHAIN", "base")
        etherscan_chain = _chain("ETHERSCAN_CHAIN", None)
        timeout = _number("ETHERSCAN_TIMEOUT", "30", float)
        retries = _number("ETHERSCAN_MAX_RETRIES", "3", int)

        primary = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
        fallback = os.getenv("BASE_RPC_FALLBACKS", "")
        rpc_urls = [primary] + [u.strip() for u in fallback.split(",") if u.strip()]

        if errors:
            raise ConfigError(errors)

        return cls(
            chain=chain or Chain.parse("base"),
            etherscan_api_key=os.getenv("ETHERSCAN_API_KEY"),
            etherscan_api_url=os.getenv("ETHERSCAN_API_URL") or None,
            etherscan_chain=etherscan_chain,
            etherscan_timeout=timeout,
            etherscan_max_retries=retries,
            offline=os.getenv("IDENTIFY_OFFLINE", "0") == "1",
            signatures_cache_dir=os.getenv("SIGNATURES_CACHE_DIR") or None,
            artifacts_dir=os.getenv("ARTIFACTS_DIR") or None,
            rpc_urls=rpc_urls,
        )
