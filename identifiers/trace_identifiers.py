"""Local-then-remote identification of trace addresses."""

import logging
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

from identifiers.address import IdentifiedAddress, TraceIdentifier
from identifiers.artifacts import ContractsByArtifact
from identifiers.config import Chain, Config
from identifiers.etherscan import EtherscanIdentifier
from identifiers.local import LocalTraceIdentifier
from identifiers.trace import CallTraceNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceIdentifiers:
    """Runs the local identifier, then Etherscan when local results look short.

    The early return compares the raw number of records to the number of
    nodes, not the distinct addresses resolved. Repeated addresses can make
    it skip Etherscan with addresses still unknown, or call Etherscan when
    every distinct address is already resolved.
    """

    local: TraceIdentifier | None = None
    etherscan: TraceIdentifier | None = None

    @classmethod
    def new(cls) -> "TraceIdentifiers":
        return cls()

    def with_local(self, known_contracts: ContractsByArtifact) -> "TraceIdentifiers":
        return replace(self, local=LocalTraceIdentifier(known_contracts))

    def with_local_and_bytecodes(
        self, known_contracts: ContractsByArtifact, contracts_bytecode: Mapping[str, bytes]
    ) -> "TraceIdentifiers":
        return replace(self, local=LocalTraceIdentifier(known_contracts).with_bytecodes(contracts_bytecode))

    def with_etherscan(self, config: Config, chain: "Chain | str | int | None" = None) -> "TraceIdentifiers":
        """Attach Etherscan. The slot stays empty when the chain has no explorer.

        Raises ``ConfigError`` when the settings are unusable.
        """
        return replace(self, etherscan=EtherscanIdentifier.from_config(config, chain))

    def is_empty(self) -> bool:
        return self.local is None and self.etherscan is None

    def close(self) -> None:
        """Release HTTP clients held by the configured identifiers."""
        for slot in (self.local, self.etherscan):
            close = getattr(slot, "close", None)
            if close is not None:
                close()

    def identify_addresses(self, nodes: Sequence[CallTraceNode]) -> list[IdentifiedAddress]:
        identities: list[IdentifiedAddress] = []
        if self.local is not None:
            identities.extend(self.local.identify_addresses(nodes))
            logger.debug("local identified %d records for %d nodes", len(identities), len(nodes))
            if len(identities) >= len(nodes):
                return identities
        if self.etherscan is not None:
            remote = self.etherscan.identify_addresses(nodes)
            logger.debug("etherscan identified %d records for %d nodes", len(remote), len(nodes))
            identities.extend(remote)
        return identities
