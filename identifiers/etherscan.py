"""Identify addresses from verified sources on Etherscan."""

import copy
import json
import logging
import time
from typing import Any, Sequence

import httpx

from identifiers.address import IdentifiedAddress
from identifiers.config import ETHERSCAN_V2_URL, Chain, Config, ConfigError
from identifiers.trace import CallTraceNode

logger = logging.getLogger(__name__)

UNVERIFIED_ABI = "Contract source code not verified"


class EtherscanError(RuntimeError):
    pass


class RateLimitedError(EtherscanError):
    pass


class InvalidApiKeyError(EtherscanError):
    pass


def _classify_error(message: str) -> EtherscanError:
    m = message.lower()
    if "invalid api key" in m or "missing/invalid api key" in m:
        return InvalidApiKeyError(message)
    if "rate limit" in m:
        return RateLimitedError(message)
    return EtherscanError(message)


def parse_source_response(data: dict[str, Any]) -> dict[str, Any] | None:
    """Turn a ``getsourcecode`` payload into contract metadata.

    Returns None for unverified contracts, raises ``EtherscanError`` for API errors.
    """
    if not isinstance(data, dict):
        raise EtherscanError(f"unexpected response type: {type(data).__name__}")
    result = data.get("result")
    if str(data.get("status")) != "1":
        raise _classify_error(str(result or data.get("message") or "unknown error"))
    if not isinstance(result, list) or not result:
        return None

    item = result[0]
    if not isinstance(item, dict):
        return None
    name = item.get("ContractName")
    raw_abi = item.get("ABI")
    if not isinstance(name, str) or not name or not isinstance(raw_abi, str):
        return None
    if raw_abi.startswith(UNVERIFIED_ABI):
        return None
    try:
        abi = json.loads(raw_abi)
    except json.JSONDecodeError:
        return None
    if not isinstance(abi, list):
        return None

    return {"contract_name": name, "abi": abi}


class EtherscanIdentifier:
    def __init__(
        self,
        api_key: str,
        chain: Chain,
        api_url: str = ETHERSCAN_V2_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.chain = chain
        self.api_url = api_url
        self.max_retries = max_retries
        self.client = client or httpx.Client(timeout=timeout)
        # address -> metadata, None when the contract is not verified
        self.contracts: dict[str, dict[str, Any] | None] = {}
        self.invalid_api_key = False

    @classmethod
    def from_config(cls, config: Config, chain: "Chain | str | int | None" = None) -> "EtherscanIdentifier | None":
        """Build the identifier, or return None when remote lookups are not available.

        Raises ``ConfigError`` listing every problem with the settings.
        """
        if config.offline or not config.etherscan_api_key:
            return None

        errors = config.validate()
        target = config.chain
        if chain is not None:
            try:
                target = Chain.parse(chain)
            except ValueError as e:
                errors.append(str(e))
                raise ConfigError(errors)

        if not config.etherscan_api_url and not target.has_etherscan:
            if config.etherscan_chain == target:
                errors.append(f"no Etherscan API known for chain {target.name} ({target.id}), set ETHERSCAN_API_URL")
            elif not errors:
                logger.debug("no Etherscan API for chain %s, skipping remote identification", target.name)
                return None

        if errors:
            raise ConfigError(errors)

        return cls(
            api_key=config.etherscan_api_key,
            chain=target,
            api_url=config.etherscan_api_url or ETHERSCAN_V2_URL,
            timeout=config.etherscan_timeout,
            max_retries=config.etherscan_max_retries,
        )

    def get_source(self, address: str) -> dict[str, Any] | None:
        params = {
            "chainid": self.chain.id,
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
            "apikey": self.api_key,
        }
        last_err: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                r = self.client.get(self.api_url, params=params)
                r.raise_for_status()
                try:
                    data = r.json()
                except ValueError as e:
                    raise EtherscanError(f"non-JSON response: {e}") from e
                return parse_source_response(data)
            except (httpx.HTTPError, RateLimitedError) as e:
                last_err = e
                if attempt < self.max_retries:
                    time.sleep(min(5, 0.6 * (2**attempt)))
        if isinstance(last_err, EtherscanError):
            raise last_err
        raise EtherscanError(f"getsourcecode failed for {address}: {last_err}")

    def identify_addresses(self, nodes: Sequence[CallTraceNode]) -> list[IdentifiedAddress]:
        if self.invalid_api_key:
            return []

        pending = []
        for node in nodes:
            a = node.address.lower()
            if a not in self.contracts and a not in pending:
                pending.append(a)

        for address in pending:
            try:
                self.contracts[address] = self.get_source(address)
            except InvalidApiKeyError as e:
                logger.warning("etherscan rejected the API key, disabling remote identification: %s", e)
                self.invalid_api_key = True
                break
            except EtherscanError as e:
                logger.warning("etherscan lookup failed for %s: %s", address, e)

        identities = []
        for node in nodes:
            meta = self.contracts.get(node.address.lower())
            if not meta:
                continue
            identities.append(
                IdentifiedAddress(
                    address=node.address.lower(),
                    label=meta["contract_name"],
                    contract=meta["contract_name"],
                    abi=copy.deepcopy(meta["abi"]),
                )
            )
        return identities

    def close(self) -> None:
        self.client.close()
