import json

import httpx
import pytest

from identifiers import etherscan
from identifiers.config import Chain, Config, ConfigError
from identifiers.etherscan import EtherscanIdentifier, parse_source_response
from identifiers.trace import CallTraceNode
from identifiers.trace_identifiers import TraceIdentifiers

TOKEN = "0x" + "aa" * 20
UNVERIFIED = "0x" + "bb" * 20
ABI = [{"type": "function", "name": "balanceOf", "inputs": [{"name": "", "type": "address"}]}]


def source_payload(name: str, abi) -> dict:
    return {
        "status": "1",
        "message": "OK",
        "result": [{"ContractName": name, "ABI": abi if isinstance(abi, str) else json.dumps(abi), "CompilerVersion": "v0.8.20"}],
    }


def make_identifier(handler, max_retries: int = 2) -> EtherscanIdentifier:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return EtherscanIdentifier("KEY", Chain.parse("base"), max_retries=max_retries, client=client)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(etherscan.time, "sleep", lambda s: None)


def test_from_config_offline_or_no_key_is_none():
    assert EtherscanIdentifier.from_config(Config(etherscan_api_key="KEY", offline=True)) is None
    assert EtherscanIdentifier.from_config(Config()) is None


def test_from_config_chain_override():
    ident = EtherscanIdentifier.from_config(Config(etherscan_api_key="KEY"), "mainnet")
    assert ident.chain == Chain(1, "mainnet")


def test_from_config_explicit_url_allows_any_chain():
    config = Config(chain=Chain.parse("anvil"), etherscan_api_key="KEY", etherscan_api_url="http://localhost:4000/api")
    ident = EtherscanIdentifier.from_config(config)
    assert ident.api_url == "http://localhost:4000/api"


def test_from_config_aggregates_errors():
    config = Config(etherscan_api_key="KEY", etherscan_api_url="ftp://nope", etherscan_max_retries=-1)
    with pytest.raises(ConfigError) as exc:
        EtherscanIdentifier.from_config(config)
    assert len(exc.value.errors) == 2
    assert "ETHERSCAN_API_URL" in str(exc.value)


def test_from_config_unknown_chain_name():
    with pytest.raises(ConfigError):
        EtherscanIdentifier.from_config(Config(etherscan_api_key="KEY"), "notachain")


def test_parse_source_response():
    assert parse_source_response(source_payload("Token", ABI))["contract_name"] == "Token"
    assert parse_source_response(source_payload("", "Contract source code not verified")) is None
    with pytest.raises(etherscan.InvalidApiKeyError):
        parse_source_response({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})


def test_parse_source_response_odd_shapes():
    with pytest.raises(etherscan.EtherscanError):
        parse_source_response([])
    assert parse_source_response({"status": "1", "result": ["garbage"]}) is None
    assert parse_source_response({"status": "1", "result": [{"ContractName": "Token", "ABI": 5}]}) is None
    assert parse_source_response({"status": "1", "result": [{"ContractName": 7, "ABI": "[]"}]}) is None
    assert parse_source_response(source_payload("Token", "{}")) is None


@pytest.mark.parametrize("payload", [
    [],
    {"status": "1", "result": ["garbage"]},
    {"status": "1", "result": [{"ContractName": "Token", "ABI": 5}]},
])
def test_odd_payload_does_not_escape_composite(payload):
    ident = make_identifier(lambda request: httpx.Response(200, json=payload))
    out = TraceIdentifiers(etherscan=ident).identify_addresses([CallTraceNode(address=TOKEN)])
    assert out == []


def test_identifies_verified_and_caches():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        addr = request.url.params["address"]
        assert request.url.params["chainid"] == "8453"
        if addr == TOKEN:
            return httpx.Response(200, json=source_payload("Token", ABI))
        return httpx.Response(200, json=source_payload("", "Contract source code not verified"))

    ident = make_identifier(handler)
    batch = [CallTraceNode(address=TOKEN), CallTraceNode(address=UNVERIFIED), CallTraceNode(address=TOKEN)]
    out = ident.identify_addresses(batch)

    assert [(i.address, i.label, i.contract) for i in out] == [(TOKEN, "Token", "Token")] * 2
    assert out[0].abi == ABI
    assert out[0].artifact_id is None
    assert len(requests) == 2

    ident.identify_addresses(batch)
    assert len(requests) == 2


def test_rate_limit_retried():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
        return httpx.Response(200, json=source_payload("Token", ABI))

    out = make_identifier(handler).identify_addresses([CallTraceNode(address=TOKEN)])
    assert len(out) == 1
    assert calls["n"] == 2


def test_transport_failure_absorbed_and_retried_next_call():
    state = {"fail": True}

    def handler(request):
        if state["fail"]:
            raise httpx.ConnectError("down")
        return httpx.Response(200, json=source_payload("Token", ABI))

    ident = make_identifier(handler, max_retries=1)
    assert ident.identify_addresses([CallTraceNode(address=TOKEN)]) == []

    state["fail"] = False
    assert len(ident.identify_addresses([CallTraceNode(address=TOKEN)])) == 1


def test_invalid_api_key_disables_identifier():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Invalid API Key"})

    ident = make_identifier(handler)
    batch = [CallTraceNode(address=TOKEN), CallTraceNode(address=UNVERIFIED)]
    assert ident.identify_addresses(batch) == []
    assert ident.invalid_api_key
    assert calls["n"] == 1

    assert ident.identify_addresses(batch) == []
    assert calls["n"] == 1
