"""Exceptions raised by podstate."""

from __future__ import annotations


class PodstateError(Exception):
    """Base exception for all podstate errors."""
    pass


class ProviderNotAvailableError(PodstateError):
    """Raised when a provider is read or watched before any enclosing scope declared it."""

    def __init__(self, provider, message: str | None = None):
        self.provider = provider
        msg = message or (
            f"{provider!r} has not been declared by any enclosing scope. "
            "Add it to the providers of the ProviderContainer or of a mounted Scope."
        )
        super().__init__(msg)


class DuplicateBindingError(PodstateError):
    """Raised when two different providers claim the same backing-storage key."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        msg = message or f"Key {key!r} is already bound to another provider"
        super().__init__(msg)


class ClosedUnitError(PodstateError):
    """Raised when a disposed unit is mutated or triggered."""

    def __init__(self, unit, message: str | None = None):
        self.unit = unit
        msg = message or f"{unit!r} has been disposed and accepts no further changes"
        super().__init__(msg)


class BuildFailureError(PodstateError):
    """
    Raised when the build function of a computed unit raises.

    The unit stays uncomputed, so the next read runs the build again
    instead of returning a poisoned value.
    """

    def __init__(self, unit, original_error: BaseException):
        self.unit = unit
        self.original_error = original_error
        super().__init__(f"Error building {unit!r}: {original_error}")


class InvalidationError(PodstateError):
    """Raised when a watcher cannot be recomputed after a watched provider changed."""

    def __init__(self, watcher, original_error: BaseException):
        self.watcher = watcher
        self.original_error = original_error
        super().__init__(
            f"Cannot recompute {watcher!r} after one of its watched providers "
            f"changed: {original_error}"
        )


class CycleError(PodstateError):
    """Raised when a computed unit (transitively) depends on itself."""
    pass


class ScopeStateError(PodstateError):
    """Raised when a scope is used outside of its mounted state."""
    pass
