"""
boxstore.errors
---------------

Structured errors for the Box layer, its codecs and the storage engine.

- One root `BoxError` with a machine-friendly `code` and optional `data`.
- Concrete subclasses for the failure classes callers must tell apart:
  missing namespaces, missing codec, codec failures, engine failures, config.
- `to_dict` gives a JSON-safe shape for logs.
- `retryable` separates transient engine conditions (busy/locked) from
  permanent ones. This layer never retries by itself.

Plain argument mistakes (empty key, non-bytes value) raise the usual
`ValueError` / `TypeError` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Type, TypeVar


class BoxErrorCode(str, Enum):
    INTERNAL = "BOX/INTERNAL"
    CONFIG = "BOX/CONFIG"

    NAMESPACE_NOT_FOUND = "BOX/NAMESPACE_NOT_FOUND"
    NO_CODEC = "BOX/NO_CODEC"

    ENCODE = "BOX/ENCODE"
    DECODE = "BOX/DECODE"

    ENGINE = "BOX/ENGINE"
    TX_NOT_WRITABLE = "BOX/TX_NOT_WRITABLE"


@dataclass(eq=False)
class BoxError(Exception):
    """
    Root error for boxstore.

    Attributes
    ----------
    code: str
        Machine-stable error code (see BoxErrorCode).
    message: str
        Human hint suitable for logs.
    data: dict
        Optional JSON-serializable details (paths, keys, sizes).
    retryable: bool
        Whether the same call may succeed if simply attempted again.
    cause: Optional[BaseException]
        Wrapped original exception.
    """

    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    retryable: bool = False
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        super().__init__(f"{_code_str(self.code)}: {self.message}")
        if self.cause is not None:
            self.__cause__ = self.cause

    def _clone(self) -> "BoxError":
        # copy.copy would re-run the subclass __init__ with the Exception args
        clone = type(self).__new__(type(self))
        clone.args = self.args
        clone.__dict__.update(self.__dict__)
        clone.__cause__ = self.__cause__
        return clone

    def with_context(self, **ctx: Any) -> "BoxError":
        """Return a copy with extra context merged into `data`."""
        clone = self._clone()
        clone.data = {**self.data, **_jsonmap(ctx)}
        return clone

    def with_cause(self, exc: BaseException) -> "BoxError":
        """Return a copy carrying `exc` as its cause."""
        clone = self._clone()
        clone.cause = exc
        clone.__cause__ = exc
        return clone

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "code": _code_str(self.code),
            "message": self.message,
            "data": _jsonmap(self.data),
            "retryable": self.retryable,
        }
        if include_cause and self.cause is not None:
            out["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return out

    def __str__(self) -> str:
        parts = [f"{_code_str(self.code)}: {self.message}"]
        if self.data:
            preview = ", ".join(f"{k}={_preview(v)}" for k, v in self.data.items())
            parts.append(f"[{preview}]")
        return " ".join(parts)


class InternalError(BoxError):
    def __init__(self, message="internal error", **data: Any) -> None:
        super().__init__(code=BoxErrorCode.INTERNAL, message=message, data=_jsonmap(data))


class ConfigError(BoxError):
    def __init__(self, message="invalid configuration", **data: Any) -> None:
        super().__init__(code=BoxErrorCode.CONFIG, message=message, data=_jsonmap(data))


class NamespaceNotFound(BoxError):
    """A non-creating path resolution could not find a namespace on the path."""

    def __init__(self, path: Sequence[bytes], depth: int) -> None:
        super().__init__(
            code=BoxErrorCode.NAMESPACE_NOT_FOUND,
            message="namespace does not exist",
            data={"path": format_path(path), "missing": format_path(path[: depth + 1])},
        )
        self.path = tuple(path)
        self.depth = depth


class NoCodec(BoxError):
    def __init__(self, path: Sequence[bytes] = ()) -> None:
        super().__init__(
            code=BoxErrorCode.NO_CODEC,
            message="no codec defined",
            data={"path": format_path(path)} if path else {},
        )


class CodecError(BoxError):
    """Base for encode/decode failures. The library exception is kept as cause."""


class EncodeError(CodecError):
    def __init__(self, message="encode failed", cause: Optional[BaseException] = None, **data: Any) -> None:
        super().__init__(
            code=BoxErrorCode.ENCODE, message=message, data=_jsonmap(data), cause=cause
        )


class DecodeError(CodecError):
    def __init__(self, message="decode failed", cause: Optional[BaseException] = None, **data: Any) -> None:
        super().__init__(
            code=BoxErrorCode.DECODE, message=message, data=_jsonmap(data), cause=cause
        )


class EngineError(BoxError):
    def __init__(
        self,
        message="storage engine error",
        retryable: bool = False,
        cause: Optional[BaseException] = None,
        code: str = BoxErrorCode.ENGINE,
        **data: Any,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            data=_jsonmap(data),
            retryable=retryable,
            cause=cause,
        )


class TxNotWritable(EngineError):
    def __init__(self, op: str) -> None:
        super().__init__(
            message="transaction not writable", code=BoxErrorCode.TX_NOT_WRITABLE, op=op
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

T = TypeVar("T", bound=BoxError)


def wrap(exc: BaseException, *, as_: Type[T] = InternalError, **ctx: Any) -> BoxError:
    """
    Wrap any exception into a BoxError subclass, attaching context.
    If `exc` already is a BoxError, returns a context-enriched copy.
    """
    if isinstance(exc, BoxError):
        return exc.with_context(**ctx)
    err = as_(str(exc) or "wrapped exception", **ctx)  # type: ignore[call-arg]
    return err.with_cause(exc)


def format_path(path: Sequence[bytes]) -> str:
    """Human form of a namespace path: b"a", b"b" -> "a/b" (non-UTF-8 parts as hex)."""
    parts = []
    for p in path:
        try:
            parts.append(bytes(p).decode("utf-8"))
        except UnicodeDecodeError:
            parts.append("0x" + bytes(p).hex())
    return "/".join(parts)


def _code_str(code: Any) -> str:
    return code.value if isinstance(code, Enum) else str(code)


def _jsonmap(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: _coerce_json(v) for k, v in data.items()}


def _coerce_json(v: Any) -> Any:
    if v is None or isinstance(v, (bool, int, float, str, list, dict)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes(v).hex()
    try:
        return str(v)
    except Exception:
        return "<unprintable>"


def _preview(v: Any, limit: int = 96) -> str:
    s = str(_coerce_json(v))
    return s if len(s) <= limit else s[:limit] + "…"


__all__ = [
    "BoxErrorCode",
    "BoxError",
    "InternalError",
    "ConfigError",
    "NamespaceNotFound",
    "NoCodec",
    "CodecError",
    "EncodeError",
    "DecodeError",
    "EngineError",
    "TxNotWritable",
    "wrap",
    "format_path",
]
