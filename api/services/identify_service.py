import json
import logging
import threading
from functools import lru_cache

import httpx

from api.services.db import get_conn
from identifiers.address import IdentifiedAddress
from identifiers.artifacts import ContractsByArtifact
from identifiers.config import Config, ConfigError
from identifiers.signatures import SignaturesIdentifier
from identifiers.trace import CallTraceNode, nodes_from_call_tracer
from identifiers.trace_identifiers import TraceIdentifiers
from ingest.trace_fetch import fetch_call_trace, fetch_runtime_codes

logger = logging.getLogger(__name__)

# identifiers keep caches and take exclusive access per call
_LOCK = threading.Lock()
_STATE: dict = {}


@lru_cache(maxsize=4)
def load_artifacts(artifacts_dir: str) -> ContractsByArtifact:
    return ContractsByArtifact.from_foundry_out(artifacts_dir)


def build_identifiers(config: Config, remote: bool = True) -> TraceIdentifiers:
    identifiers = TraceIdentifiers.new()
    if config.artifacts_dir:
        identifiers = identifiers.with_local(load_artifacts(config.artifacts_dir))
    if remote:
        try:
            identifiers = identifiers.with_etherscan(config)
        except ConfigError as e:
            logger.warning("continuing without Etherscan: %s", e)
    return identifiers


def build_signatures(config: Config) -> SignaturesIdentifier:
    signatures = SignaturesIdentifier(config.signatures_cache_dir, offline=config.offline)
    if config.artifacts_dir:
        signatures.cache.extend_from_artifacts(load_artifacts(config.artifacts_dir))
    return signatures


def _context():
    if "config" not in _STATE:
        config = Config.from_env()
        _STATE["config"] = config
        _STATE["identifiers"] = build_identifiers(config)
        _STATE["signatures"] = build_signatures(config)
    return _STATE["config"], _STATE["identifiers"], _STATE["signatures"]


def close_identifiers() -> None:
    identifiers = _STATE.pop("identifiers", None)
    _STATE.clear()
    if identifiers is not None:
        identifiers.close()


def _identify(nodes: list[CallTraceNode], bytecodes: dict[str, bytes] | None = None, persist: bool = False):
    config, identifiers, signatures = _context()
    if bytecodes and config.artifacts_dir:
        identifiers = identifiers.with_local_and_bytecodes(load_artifacts(config.artifacts_dir), bytecodes)

    with _LOCK:
        identified = identifiers.identify_addresses(nodes)
        known = {i.address for i in identified}
        unresolved = [n for n in nodes if n.address not in known]
        by_signature = signatures.identify_addresses(unresolved)
        signatures.save()

    stored = persist_identities(identified) if persist else 0
    return {
        "nodes": len(nodes),
        "identified": [i.to_dict() for i in identified],
        "signatures": [i.to_dict() for i in by_signature],
        "stored": stored,
    }


def identify_trace(trace: dict, persist: bool = False):
    return _identify(nodes_from_call_tracer(trace), persist=persist)


def identify_tx(tx_hash: str, persist: bool = False):
    config, _, _ = _context()
    with httpx.Client() as client:
        nodes = fetch_call_trace(client, config.rpc_urls, tx_hash)
        bytecodes = None
        if config.artifacts_dir:
            bytecodes = fetch_runtime_codes(client, config.rpc_urls, [n.address for n in nodes if not n.is_create])
    result = _identify(nodes, bytecodes=bytecodes, persist=persist)
    return {"tx_hash": tx_hash.lower(), **result}


def persist_identities(identities: list[IdentifiedAddress]) -> int:
    """Store one identity per address; the first record for an address wins."""
    first: dict[str, IdentifiedAddress] = {}
    for ident in identities:
        first.setdefault(ident.address.lower(), ident)
    if not first:
        return 0

    with get_conn() as conn:
        cur = conn.cursor()
        for addr, ident in first.items():
            cur.execute(
                """
                INSERT INTO address_identities(address, label, contract, abi, artifact_id, updated_at)
                VALUES(%s, %s, %s, %s::jsonb, %s, now())
                ON CONFLICT (address) DO UPDATE SET
                  label = EXCLUDED.label,
                  contract = EXCLUDED.contract,
                  abi = EXCLUDED.abi,
                  artifact_id = EXCLUDED.artifact_id,
                  updated_at = now()
                """,
                (
                    addr,
                    ident.label,
                    ident.contract,
                    json.dumps(ident.abi) if ident.abi is not None else None,
                    ident.artifact_id.identifier() if ident.artifact_id else None,
                ),
            )
    return len(first)


def get_identity(address: str):
    addr = address.lower()
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT label, contract, abi, artifact_id, updated_at FROM address_identities WHERE address = %s",
            (addr,),
        )
        row = cur.fetchone()
    if not row:
        return None
    label, contract, abi, artifact_id, updated_at = row
    return {
        "address": addr,
        "label": label,
        "contract": contract,
        "abi": abi,
        "artifact_id": artifact_id,
        "updated_at": updated_at.isoformat() if updated_at else None,
    }
