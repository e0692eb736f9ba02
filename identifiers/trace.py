"""Call trace nodes and callTracer flattening."""

from dataclasses import dataclass
from typing import Any, Iterator

CREATE_KINDS = {"CREATE", "CREATE2"}


def h2i(x) -> int:
    if x is None:
        return 0
    if isinstance(x, int):
        return x
    return int(x, 16)


def decode_hex(value: str | None) -> bytes:
    if not value:
        return b""
    v = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(v)


@dataclass(frozen=True)
class CallTraceNode:
    address: str
    caller: str | None = None
    kind: str = "CALL"
    input: str = "0x"
    output: str = "0x"
    value: int = 0
    depth: int = 0
    success: bool = True

    @property
    def is_create(self) -> bool:
        return self.kind in CREATE_KINDS

    @property
    def selector(self) -> str | None:
        if self.is_create:
            return None
        data = (self.input or "0x")[2:]
        if len(data) < 8:
            return None
        return "0x" + data[:8].lower()


def _str_field(frame: dict[str, Any], key: str, default: str) -> str:
    v = frame.get(key)
    if v is None or v == "":
        return default
    if not isinstance(v, str):
        raise ValueError(f"frame field {key!r} must be a string, got {type(v).__name__}")
    return v


def _walk(frame: Any, depth: int) -> Iterator[CallTraceNode]:
    if not isinstance(frame, dict):
        raise ValueError(f"call frame must be an object, got {type(frame).__name__}")
    to_a = _str_field(frame, "to", "").lower()
    if to_a:
        try:
            value = h2i(frame.get("value"))
        except (TypeError, ValueError) as e:
            raise ValueError(f"frame value is not a hex quantity: {frame.get('value')!r}") from e
        yield CallTraceNode(
            address=to_a,
            caller=_str_field(frame, "from", "").lower() or None,
            kind=_str_field(frame, "type", "CALL").upper(),
            input=_str_field(frame, "input", "0x"),
            output=_str_field(frame, "output", "0x"),
            value=value,
            depth=depth,
            success="error" not in frame,
        )
    calls = frame.get("calls") or []
    if not isinstance(calls, list):
        raise ValueError(f"frame calls must be a list, got {type(calls).__name__}")
    for child in calls:
        yield from _walk(child, depth + 1)


def nodes_from_call_tracer(frame: dict[str, Any]) -> list[CallTraceNode]:
    """Flatten a ``callTracer`` frame into nodes, depth-first in call order.

    Raises ``ValueError`` for frames that do not have the callTracer shape.
    """
    if not frame:
        return []
    return list(_walk(frame, 0))
