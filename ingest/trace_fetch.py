"""Call-trace fetching over JSON-RPC.

Features:
- provider fallback with exponential back-off
- debug_traceTransaction with the callTracer
- contract runtime code lookup for the local identifier
"""

import time

import httpx

from identifiers.trace import CallTraceNode, decode_hex, nodes_from_call_tracer


def rpc_call(client: httpx.Client, rpc_urls: list[str], method: str, params: list, retries: int = 3):
    last_err = None
    for rpc_url in rpc_urls:
        for attempt in range(retries):
            try:
                payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
                r = client.post(rpc_url, json=payload, timeout=30)
                r.raise_for_status()
                data = r.json()
                if "error" in data:
                    raise RuntimeError(f"RPC {method} error: {data['error']}")
                return data.get("result"), rpc_url, attempt
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                last_err = e
                time.sleep(min(5, 0.6 * (2**attempt)))
    raise RuntimeError(f"RPC {method} failed across providers: {last_err}")


def fetch_call_trace(client: httpx.Client, rpc_urls: list[str], tx_hash: str) -> list[CallTraceNode]:
    frame, _, _ = rpc_call(client, rpc_urls, "debug_traceTransaction", [tx_hash, {"tracer": "callTracer"}])
    return nodes_from_call_tracer(frame or {})


def fetch_runtime_codes(
    client: httpx.Client, rpc_urls: list[str], addresses: list[str], block: str = "latest"
) -> dict[str, bytes]:
    """Runtime bytecode per address; addresses without code are left out."""
    codes = {}
    for a in dict.fromkeys(x.lower() for x in addresses):
        code, _, _ = rpc_call(client, rpc_urls, "eth_getCode", [a, block])
        raw = decode_hex(code)
        if raw:
            codes[a] = raw
    return codes
