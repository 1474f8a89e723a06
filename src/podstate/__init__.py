"""podstate: provider-based reactive state management for Python."""

from importlib.metadata import version as _version

__version__ = _version("podstate")

from podstate.args import Args, EMPTY_ARGS
from podstate.async_value import AsyncStatus, AsyncValue
from podstate.computed import AsyncComputed, Computed, ComputeState, StreamComputed
from podstate.container import ProviderContainer
from podstate.errors import (
    BuildFailureError,
    ClosedUnitError,
    CycleError,
    DuplicateBindingError,
    InvalidationError,
    PodstateError,
    ProviderNotAvailableError,
    ScopeStateError,
)
from podstate.observable import Change, Unit, set_scheduler, transaction
from podstate.provider import (
    FinalProvider,
    Provider,
    StateProvider,
    ValueProvider,
    async_provider,
    computed,
    final_provider,
    state_provider,
    stream_provider,
    value_provider,
)
from podstate.ref import ProviderRef, Ref, ScopeRef
from podstate.registry import InstanceRegistry
from podstate.scope import Scope, ScopeStatus
from podstate.stream import EventStream
# textual NOT auto-imported: opt-in only

__all__ = [
    "Args",
    "EMPTY_ARGS",
    "AsyncStatus",
    "AsyncValue",
    "Unit",
    "Change",
    "set_scheduler",
    "transaction",
    "Computed",
    "ComputeState",
    "AsyncComputed",
    "StreamComputed",
    "Provider",
    "StateProvider",
    "ValueProvider",
    "FinalProvider",
    "state_provider",
    "value_provider",
    "final_provider",
    "async_provider",
    "stream_provider",
    "computed",
    "Ref",
    "ScopeRef",
    "ProviderRef",
    "InstanceRegistry",
    "Scope",
    "ScopeStatus",
    "ProviderContainer",
    "EventStream",
    "PodstateError",
    "ProviderNotAvailableError",
    "DuplicateBindingError",
    "ClosedUnitError",
    "BuildFailureError",
    "InvalidationError",
    "CycleError",
    "ScopeStateError",
]
