"""Identify addresses from the project's own compiled artifacts."""

import copy
import logging
from typing import Mapping, Sequence

from identifiers.address import IdentifiedAddress
from identifiers.artifacts import ArtifactId, ContractData, ContractsByArtifact
from identifiers.trace import CallTraceNode, decode_hex

logger = logging.getLogger(__name__)

# Diff scores are noisy on small contracts, so the cutoff is loose.
MAX_DIFF_SCORE = 0.85


def bytecode_diff_score(a: bytes, b: bytes) -> float:
    """Fraction of differing bytes, 0.0 for identical code and 1.0 for unrelated."""
    if len(a) < len(b):
        a, b = b, a
    if not a:
        return 0.0

    n_different = len(a) - len(b)
    # large length gap: treat as completely different
    if n_different > 32 and n_different * 10 > len(a):
        return 1.0

    n_different += sum(1 for x, y in zip(a, b) if x != y)
    return n_different / len(a)


def _within_len_window(known: bytes, probe: bytes) -> bool:
    lo = len(probe) * 0.9
    hi = len(probe) * 1.1
    return lo <= len(known) <= hi


class LocalTraceIdentifier:
    def __init__(self, known_contracts: ContractsByArtifact, contracts_bytecode: Mapping[str, bytes] | None = None):
        self.known_contracts = known_contracts
        self.contracts_bytecode: dict[str, bytes] = {}
        if contracts_bytecode:
            self.contracts_bytecode = {a.lower(): code for a, code in contracts_bytecode.items()}

    def with_bytecodes(self, contracts_bytecode: Mapping[str, bytes]) -> "LocalTraceIdentifier":
        return LocalTraceIdentifier(self.known_contracts, contracts_bytecode)

    def identify_code(
        self, runtime_code: bytes | None, creation_code: bytes | None
    ) -> tuple[ArtifactId, ContractData] | None:
        min_score = float("inf")
        best = None

        for artifact_id, contract in self.known_contracts:
            for known, probe in ((contract.deployed_bytecode, runtime_code), (contract.bytecode, creation_code)):
                if not known or not probe:
                    continue
                if known == probe:
                    return artifact_id, contract
                if not _within_len_window(known, probe):
                    continue
                score = bytecode_diff_score(known, probe)
                if score < min_score:
                    min_score = score
                    best = (artifact_id, contract)

        if best is not None and min_score < MAX_DIFF_SCORE:
            logger.debug("closest match %s score=%.3f", best[0].identifier(), min_score)
            return best
        return None

    def _codes_for(self, node: CallTraceNode) -> tuple[bytes | None, bytes | None]:
        if node.is_create:
            return decode_hex(node.output) or None, decode_hex(node.input) or None
        return self.contracts_bytecode.get(node.address.lower()), None

    def identify_addresses(self, nodes: Sequence[CallTraceNode]) -> list[IdentifiedAddress]:
        identities = []
        for node in nodes:
            try:
                runtime_code, creation_code = self._codes_for(node)
            except ValueError as e:
                logger.warning("bad bytecode for %s: %s", node.address, e)
                continue
            if runtime_code is None and creation_code is None:
                continue

            match = self.identify_code(runtime_code, creation_code)
            if match is None:
                continue
            artifact_id, contract = match
            identities.append(
                IdentifiedAddress(
                    address=node.address.lower(),
                    label=artifact_id.name,
                    contract=artifact_id.identifier(),
                    abi=copy.deepcopy(contract.abi),
                    artifact_id=artifact_id,
                )
            )
        return identities
