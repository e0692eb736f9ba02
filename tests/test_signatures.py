import httpx

from identifiers.artifacts import ArtifactId, ContractData, ContractsByArtifact
from identifiers.signatures import (
    SignaturesCache,
    SignaturesIdentifier,
    abi_signature,
    function_from_signature,
)
from identifiers.trace import CallTraceNode

TRANSFER = "0xa9059cbb"
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
ERC20_ABI = [
    {"type": "function", "name": "transfer", "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}]},
    {
        "type": "event",
        "name": "Transfer",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]


def openchain_handler(seen):
    def handler(request: httpx.Request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, json={
            "ok": True,
            "result": {
                "function": {
                    "0x095ea7b3": [{"name": "approve(address,uint256)", "filtered": False}],
                    "0xdeadbeef": None,
                },
                "event": {},
            },
        })
    return handler


def test_abi_signature_with_tuples():
    item = {
        "name": "swap",
        "inputs": [
            {"type": "tuple", "components": [{"type": "address"}, {"type": "uint24"}]},
            {"type": "tuple[]", "components": [{"type": "bytes32"}]},
        ],
    }
    assert abi_signature(item) == "swap((address,uint24),(bytes32)[])"


def test_function_from_signature_round_trips_tuple_types():
    frag = function_from_signature("swap((address,uint24),(bytes32)[],uint256)")
    assert frag["name"] == "swap"
    assert abi_signature(frag) == "swap((address,uint24),(bytes32)[],uint256)"
    assert frag["inputs"][1]["type"] == "tuple[]"


def test_cache_from_artifacts():
    cache = SignaturesCache()
    cache.extend_from_artifacts(ContractsByArtifact({ArtifactId("src/T.sol", "T"): ContractData(name="T", abi=ERC20_ABI)}))
    assert cache.functions[TRANSFER] == "transfer(address,uint256)"
    assert cache.events[TRANSFER_TOPIC] == "Transfer(address,address,uint256)"


def test_identify_functions_batches_misses_and_caches_unknowns():
    seen = []
    ident = SignaturesIdentifier(client=httpx.Client(transport=httpx.MockTransport(openchain_handler(seen))))
    ident.cache.functions[TRANSFER] = "transfer(address,uint256)"

    out = ident.identify_functions([TRANSFER, "0x095EA7B3", "0xdeadbeef"])
    assert out == ["transfer(address,uint256)", "approve(address,uint256)", None]
    assert len(seen) == 1
    assert seen[0]["function"] == "0x095ea7b3,0xdeadbeef"

    ident.identify_functions(["0xdeadbeef"])
    assert len(seen) == 1


def test_offline_uses_cache_only():
    seen = []
    ident = SignaturesIdentifier(offline=True, client=httpx.Client(transport=httpx.MockTransport(openchain_handler(seen))))
    assert ident.identify_events([TRANSFER_TOPIC]) == [None]
    assert seen == []


def test_lookup_failure_leaves_entries_unresolved():
    def handler(request):
        return httpx.Response(503)

    ident = SignaturesIdentifier(client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert ident.identify_functions([TRANSFER]) == [None]
    assert TRANSFER not in ident.cache.functions


def test_identify_addresses_groups_by_address():
    token = "0x" + "aa" * 20
    other = "0x" + "bb" * 20
    ident = SignaturesIdentifier(offline=True)
    ident.cache.functions[TRANSFER] = "transfer(address,uint256)"
    batch = [
        CallTraceNode(address=token, input=TRANSFER + "00" * 64),
        CallTraceNode(address=token, input=TRANSFER + "11" * 64),
        CallTraceNode(address=other, input="0x12345678"),
        CallTraceNode(address=other, kind="CREATE", input="0x6080"),
    ]
    out = ident.identify_addresses(batch)
    assert len(out) == 1
    assert out[0].address == token
    assert out[0].label is None and out[0].contract is None
    assert [f["name"] for f in out[0].abi] == ["transfer"]


def test_cache_persisted(tmp_path):
    ident = SignaturesIdentifier(cache_dir=tmp_path, offline=True)
    ident.cache.functions[TRANSFER] = "transfer(address,uint256)"
    ident.save()

    reloaded = SignaturesIdentifier(cache_dir=tmp_path, offline=True)
    assert reloaded.identify_functions([TRANSFER]) == ["transfer(address,uint256)"]


def test_corrupt_cache_file_ignored(tmp_path):
    (tmp_path / "signatures.json").write_text('["not", "an", "object"]')
    assert SignaturesIdentifier(cache_dir=tmp_path, offline=True).cache.functions == {}

    (tmp_path / "signatures.json").write_text('{"functions": {"0xa9059cbb": "transfer(address,uint256)", "0x1": 5}, "events": []}')
    cache = SignaturesIdentifier(cache_dir=tmp_path, offline=True).cache
    assert cache.functions == {TRANSFER: "transfer(address,uint256)"}
    assert cache.events == {}


def test_odd_openchain_replies_absorbed():
    replies = [
        ["ok"],
        {"ok": True, "result": "nope"},
        {"ok": True, "result": {"function": {TRANSFER: ["transfer(address,uint256)"]}}},
        {"ok": True, "result": {"function": {TRANSFER: [{"name": 5}]}}},
    ]
    for reply in replies:
        def handler(request, reply=reply):
            return httpx.Response(200, json=reply)

        ident = SignaturesIdentifier(client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert ident.identify_functions([TRANSFER]) == [None]
        assert TRANSFER not in ident.cache.functions
