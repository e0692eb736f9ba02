"""Compiled-contract registry loaded from Foundry build output."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from identifiers.trace import decode_hex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactId:
    source: str
    name: str
    version: str | None = None
    build_id: str | None = None

    def identifier(self) -> str:
        return f"{self.source}:{self.name}"


@dataclass
class ContractData:
    name: str
    abi: list[dict[str, Any]] = field(default_factory=list)
    bytecode: bytes = b""
    deployed_bytecode: bytes = b""


def _bytecode_object(raw) -> bytes:
    if isinstance(raw, dict):
        raw = raw.get("object")
    if not raw or not isinstance(raw, str):
        return b""
    try:
        return decode_hex(raw)
    except ValueError:
        # unlinked libraries leave __$...$__ placeholders in the hex
        return b""


class ContractsByArtifact:
    """Artifact id -> contract data. Owned by the caller, read by identifiers."""

    def __init__(self, contracts: dict[ArtifactId, ContractData] | None = None):
        self._contracts: dict[ArtifactId, ContractData] = dict(contracts or {})

    def __len__(self) -> int:
        return len(self._contracts)

    def __iter__(self) -> Iterator[tuple[ArtifactId, ContractData]]:
        return iter(self._contracts.items())

    def __contains__(self, artifact_id) -> bool:
        return artifact_id in self._contracts

    def get(self, artifact_id: ArtifactId) -> ContractData | None:
        return self._contracts.get(artifact_id)

    def add(self, artifact_id: ArtifactId, data: ContractData) -> None:
        self._contracts[artifact_id] = data

    def find_by_name(self, name: str) -> list[tuple[ArtifactId, ContractData]]:
        return [(aid, c) for aid, c in self._contracts.items() if aid.name == name]

    @classmethod
    def from_foundry_out(cls, out_dir: str | Path) -> "ContractsByArtifact":
        """Load ``out/<File>.sol/<Name>.json`` artifacts.

        The source path comes from ``metadata.settings.compilationTarget`` when
        present, otherwise from the artifact directory name.
        """
        root = Path(out_dir)
        registry = cls()
        for f in sorted(root.glob("*/*.json")):
            if f.parent.name == "build-info":
                continue
            try:
                data = json.loads(f.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("skipping unreadable artifact %s: %s", f, e)
                continue
            if not isinstance(data, dict) or "abi" not in data:
                continue

            name = f.stem
            metadata = data.get("metadata") or {}
            if isinstance(metadata, str):
                try:
                    metadata = json.loads(metadata)
                except json.JSONDecodeError:
                    metadata = {}
            target = (metadata.get("settings") or {}).get("compilationTarget") or {}
            source = next(iter(target), None) or f.parent.name
            version = (metadata.get("compiler") or {}).get("version")

            build_id = data.get("id")
            artifact_id = ArtifactId(
                source=source,
                name=name,
                version=version,
                build_id=str(build_id) if build_id is not None else None,
            )
            registry.add(
                artifact_id,
                ContractData(
                    name=name,
                    abi=data.get("abi") or [],
                    bytecode=_bytecode_object(data.get("bytecode")),
                    deployed_bytecode=_bytecode_object(data.get("deployedBytecode")),
                ),
            )
        logger.debug("loaded %d artifacts from %s", len(registry), root)
        return registry
