#!/usr/bin/env python3
"""Print identified addresses of a transaction's call trace as JSON lines."""

import argparse
import json
import sys
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from identifiers.artifacts import ContractsByArtifact  # noqa: E402
from identifiers.config import Config, ConfigError  # noqa: E402
from identifiers.signatures import SignaturesIdentifier  # noqa: E402
from identifiers.trace_identifiers import TraceIdentifiers  # noqa: E402
from ingest.trace_fetch import fetch_call_trace, fetch_runtime_codes  # noqa: E402


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("tx_hash")
    parser.add_argument("--no-remote", action="store_true", help="skip Etherscan lookups")
    parser.add_argument("--signatures", action="store_true", help="resolve selectors of unidentified calls")
    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
    except ConfigError as e:
        print(f"[identify] {e}", file=sys.stderr)
        return 2

    with httpx.Client() as client:
        nodes = fetch_call_trace(client, config.rpc_urls, args.tx_hash)
        print(f"[identify] tx={args.tx_hash} nodes={len(nodes)}", file=sys.stderr)

        identifiers = TraceIdentifiers.new()
        contracts = None
        if config.artifacts_dir:
            contracts = ContractsByArtifact.from_foundry_out(config.artifacts_dir)
            codes = fetch_runtime_codes(client, config.rpc_urls, [n.address for n in nodes if not n.is_create])
            identifiers = identifiers.with_local_and_bytecodes(contracts, codes)

    if not args.no_remote:
        try:
            identifiers = identifiers.with_etherscan(config)
        except ConfigError as e:
            print(f"[identify] etherscan disabled: {e}", file=sys.stderr)

    if identifiers.is_empty():
        print("[identify] no identifiers configured (set ARTIFACTS_DIR or ETHERSCAN_API_KEY)", file=sys.stderr)

    try:
        identified = identifiers.identify_addresses(nodes)
    finally:
        identifiers.close()
    for ident in identified:
        print(json.dumps(ident.to_dict()))

    if args.signatures:
        known = {i.address for i in identified}
        signatures = SignaturesIdentifier(config.signatures_cache_dir, offline=config.offline)
        if contracts is not None:
            signatures.cache.extend_from_artifacts(contracts)
        for ident in signatures.identify_addresses([n for n in nodes if n.address not in known]):
            print(json.dumps(ident.to_dict()))
        signatures.save()

    print(f"[identify] identified={len(identified)}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
