"""Identified-address record and the identifier contract."""

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from identifiers.artifacts import ArtifactId
from identifiers.trace import CallTraceNode


@dataclass
class IdentifiedAddress:
    """An address identified by a trace identifier.

    ``contract`` may be in the ``"<source>:<name>"`` form for local matches.
    ``abi`` is always owned by the record, never a view into a registry.
    """

    address: str
    label: str | None = None
    contract: str | None = None
    abi: list[dict[str, Any]] | None = None
    artifact_id: ArtifactId | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label,
            "contract": self.contract,
            "abi": self.abi,
            "artifact_id": self.artifact_id.identifier() if self.artifact_id else None,
        }


class TraceIdentifier(Protocol):
    """Figures out which labels and ABIs belong to the addresses of a trace."""

    def identify_addresses(self, nodes: Sequence[CallTraceNode]) -> list[IdentifiedAddress]:
        """Identify addresses in a batch of call trace nodes.

        Lookup failures are absorbed: the identifier returns whatever it managed
        to resolve, possibly nothing.
        """
        ...
