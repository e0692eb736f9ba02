"""Resolve function selectors and event topics against the OpenChain signature database."""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import httpx
from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector

from identifiers.address import IdentifiedAddress
from identifiers.artifacts import ContractsByArtifact
from identifiers.trace import CallTraceNode

logger = logging.getLogger(__name__)

OPENCHAIN_LOOKUP_URL = "https://api.openchain.xyz/signature-database/v1/lookup"
CACHE_FILE = "signatures.json"


def canonical_type(param: dict[str, Any]) -> str:
    t = param.get("type", "")
    if t.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components") or [])
        return f"({inner}){t[len('tuple'):]}"
    return t


def abi_signature(item: dict[str, Any]) -> str:
    types = ",".join(canonical_type(p) for p in item.get("inputs") or [])
    return f"{item.get('name', '')}({types})"


def split_params(s: str) -> list[str]:
    """Split a parameter list on top-level commas."""
    out, depth, cur = [], 0, []
    for ch in s:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            out.append("".join(cur))
            cur = []
            continue
        cur.append(ch)
    if cur:
        out.append("".join(cur))
    return [p.strip() for p in out if p.strip()]


def _param_from_type(t: str) -> dict[str, Any]:
    if t.startswith("("):
        depth = 0
        for i, ch in enumerate(t):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    break
        return {
            "name": "",
            "type": "tuple" + t[i + 1:],
            "components": [_param_from_type(x) for x in split_params(t[1:i])],
        }
    return {"name": "", "type": t}


def function_from_signature(signature: str) -> dict[str, Any]:
    """Build a minimal ABI function fragment from ``name(type,...)`` text."""
    name, _, rest = signature.partition("(")
    params = rest[:-1] if rest.endswith(")") else rest
    return {
        "type": "function",
        "name": name,
        "inputs": [_param_from_type(t) for t in split_params(params)],
        "outputs": [],
        "stateMutability": "nonpayable",
    }


def _signature_table(raw) -> dict[str, str | None]:
    """Keep only well-formed ``key -> signature or None`` entries."""
    if not isinstance(raw, dict):
        return {}
    return {k: v for k, v in raw.items() if isinstance(k, str) and (v is None or isinstance(v, str))}


def _first_name(candidates) -> tuple[bool, str | None]:
    """(answered, signature) for one OpenChain result entry."""
    if candidates is None or candidates == []:
        return True, None
    if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
        return False, None
    name = candidates[0].get("name")
    if not isinstance(name, str):
        return False, None
    return True, name


class SignaturesCache:
    def __init__(self, functions: dict[str, str | None] | None = None, events: dict[str, str | None] | None = None):
        self.functions: dict[str, str | None] = dict(functions or {})
        self.events: dict[str, str | None] = dict(events or {})

    @classmethod
    def load(cls, path: str | Path) -> "SignaturesCache":
        p = Path(path)
        if not p.exists():
            return cls()
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("ignoring unreadable signatures cache %s: %s", p, e)
            return cls()
        if not isinstance(data, dict):
            logger.warning("ignoring signatures cache %s: expected an object", p)
            return cls()
        return cls(_signature_table(data.get("functions")), _signature_table(data.get("events")))

    def save(self, path: str | Path) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps({"functions": self.functions, "events": self.events}, sort_keys=True), encoding="utf-8")

    def extend_from_abi(self, abi: Iterable[dict[str, Any]]) -> None:
        for item in abi:
            if not isinstance(item, dict):
                continue
            kind = item.get("type")
            if kind == "function":
                sig = abi_signature(item)
                self.functions["0x" + function_signature_to_4byte_selector(sig).hex()] = sig
            elif kind == "event":
                sig = abi_signature(item)
                self.events["0x" + event_signature_to_log_topic(sig).hex()] = sig
            elif kind == "error":
                sig = abi_signature(item)
                self.functions.setdefault("0x" + function_signature_to_4byte_selector(sig).hex(), sig)

    def extend_from_artifacts(self, contracts: ContractsByArtifact) -> None:
        for _, contract in contracts:
            self.extend_from_abi(contract.abi)


class SignaturesIdentifier:
    def __init__(
        self,
        cache_dir: str | Path | None = None,
        offline: bool = False,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.cache_path = Path(cache_dir) / CACHE_FILE if cache_dir else None
        self.cache = SignaturesCache.load(self.cache_path) if self.cache_path else SignaturesCache()
        self.offline = offline
        self.client = client
        self.timeout = timeout

    def _lookup(self, kind: str, keys: list[str]) -> dict[str, str | None]:
        if self.offline or not keys:
            return {}
        params = {kind: ",".join(keys), "filter": "true"}
        try:
            if self.client is not None:
                r = self.client.get(OPENCHAIN_LOOKUP_URL, params=params)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    r = client.get(OPENCHAIN_LOOKUP_URL, params=params)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("signature lookup failed for %d %ss: %s", len(keys), kind, e)
            return {}
        if not isinstance(data, dict) or not data.get("ok"):
            logger.warning("signature lookup rejected: %s", data.get("error") if isinstance(data, dict) else data)
            return {}

        result = data.get("result")
        found = result.get(kind) if isinstance(result, dict) else None
        if not isinstance(found, dict):
            logger.warning("signature lookup returned no %s table", kind)
            return {}
        out: dict[str, str | None] = {}
        for key in keys:
            answered, name = _first_name(found.get(key))
            if answered:
                out[key] = name
            else:
                logger.warning("unexpected signature entry for %s: %r", key, found.get(key))
        return out

    def _identify(self, kind: str, table: dict[str, str | None], keys: Sequence[str]) -> list[str | None]:
        normalized = [k.lower() for k in keys]
        missing = []
        for k in normalized:
            if k not in table and k not in missing:
                missing.append(k)
        table.update(self._lookup(kind, missing))
        return [table.get(k) for k in normalized]

    def identify_functions(self, selectors: Sequence[str]) -> list[str | None]:
        return self._identify("function", self.cache.functions, selectors)

    def identify_events(self, topics: Sequence[str]) -> list[str | None]:
        return self._identify("event", self.cache.events, topics)

    def identify_addresses(self, nodes: Sequence[CallTraceNode]) -> list[IdentifiedAddress]:
        by_address: dict[str, list[str]] = {}
        for node in nodes:
            sel = node.selector
            if sel is None:
                continue
            sels = by_address.setdefault(node.address.lower(), [])
            if sel not in sels:
                sels.append(sel)
        if not by_address:
            return []

        all_selectors = sorted({s for sels in by_address.values() for s in sels})
        resolved = dict(zip(all_selectors, self.identify_functions(all_selectors)))

        identities = []
        for address, sels in by_address.items():
            abi = [function_from_signature(resolved[s]) for s in sels if resolved.get(s)]
            if abi:
                identities.append(IdentifiedAddress(address=address, abi=abi))
        return identities

    def save(self) -> None:
        if self.cache_path is None:
            return
        try:
            self.cache.save(self.cache_path)
        except OSError as e:
            logger.warning("could not write signatures cache %s: %s", self.cache_path, e)
