"""Argument bundles passed to build functions and family providers."""

from __future__ import annotations

from typing import Any, Iterator, Mapping


class Args(Mapping[str, Any]):
    """An immutable, hashable bundle of named arguments.

    ``str(args)`` is canonical (keys sorted, values rendered with ``repr``),
    so two equal bundles always derive the same family identifier:

        str(Args(b=2, a="x"))  # "Args(a='x', b=2)"
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:
        merged = dict(data) if data else {}
        merged.update(kwargs)
        self._data = merged

    @classmethod
    def coerce(cls, value: Args | Mapping[str, Any] | None) -> Args:
        """Turn None, a mapping or an Args into an Args."""
        if value is None:
            return EMPTY_ARGS
        if isinstance(value, Args):
            return value
        if isinstance(value, Mapping):
            return cls(value)
        raise TypeError(f"Expected Args or a mapping, got {type(value).__name__}")

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Args):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(str(self))

    def __str__(self) -> str:
        inner = ", ".join(f"{key}={self._data[key]!r}" for key in sorted(self._data))
        return f"Args({inner})"

    __repr__ = __str__


EMPTY_ARGS = Args()
