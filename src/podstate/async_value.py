"""AsyncValue — the loading / data / error snapshot held by asynchronous units."""

from __future__ import annotations

import enum
import inspect
from dataclasses import dataclass
from typing import Any, Callable


class AsyncStatus(enum.Enum):
    LOADING = "loading"
    DATA = "data"
    ERROR = "error"


@dataclass(frozen=True)
class AsyncValue:
    """Immutable snapshot of an asynchronous result.

    Usage:
        value = unit.value
        text = value.when(
            data=lambda v: f"{v} items",
            error=lambda e: f"failed: {e}",
            loading=lambda: "…",
        )
    """

    status: AsyncStatus
    value: Any = None
    error: BaseException | None = None

    @classmethod
    def loading(cls) -> AsyncValue:
        return cls(AsyncStatus.LOADING)

    @classmethod
    def data(cls, value: Any) -> AsyncValue:
        return cls(AsyncStatus.DATA, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> AsyncValue:
        return cls(AsyncStatus.ERROR, error=error)

    @property
    def is_loading(self) -> bool:
        return self.status is AsyncStatus.LOADING

    @property
    def has_value(self) -> bool:
        return self.status is AsyncStatus.DATA

    @property
    def has_error(self) -> bool:
        return self.status is AsyncStatus.ERROR

    def when(
        self,
        *,
        data: Callable[[Any], Any],
        error: Callable[[BaseException], Any],
        loading: Callable[[], Any],
    ) -> Any:
        """Dispatch on status and return whatever the matching branch returns."""
        if self.status is AsyncStatus.DATA:
            return data(self.value)
        if self.status is AsyncStatus.ERROR:
            return error(self.error)
        return loading()

    @classmethod
    async def guard(cls, fn: Callable[..., Any], *args: Any) -> AsyncValue:
        """Run fn (sync or async) and capture its outcome as data or failure."""
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as err:
            return cls.failure(err)
        return cls.data(result)
