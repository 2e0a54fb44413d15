"""Variable registry used by the target responder.

The responder only depends on the :class:`VariableRegistry` capability
protocol; :class:`StaticVariableRegistry` is the in-memory implementation
used by the demo target and the tests.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Iterator
from typing import Protocol, runtime_checkable

import msgspec

from .protocol import protocol, values
from .protocol.errors import WriteError, WriteErrorKind
from .protocol.protocol import MessageType
from .protocol.values import Scalar, TypedValue, ValueData

logger = logging.getLogger("euibridge.registry")


class VariableHandle(msgspec.Struct, frozen=True):
    """Opaque reference returned by :meth:`VariableRegistry.lookup`."""

    identifier: bytes
    kind: MessageType
    writable: bool
    index: int


@runtime_checkable
class VariableRegistry(Protocol):
    def lookup(self, identifier: bytes) -> VariableHandle | None: ...

    def read(self, handle: VariableHandle) -> TypedValue: ...

    def write(self, handle: VariableHandle, value: TypedValue) -> None: ...

    def enumerate(self) -> Iterable[bytes]: ...


def writable_identifiers(registry: VariableRegistry) -> list[bytes]:
    """Identifiers of writable variables, in enumeration order."""
    result: list[bytes] = []
    for identifier in registry.enumerate():
        handle = registry.lookup(identifier)
        if handle is not None and handle.writable:
            result.append(identifier)
    return result


class Variable(msgspec.Struct, kw_only=True):
    """Declaration of one registry entry.

    Attributes:
        identifier: Message identifier (1..15 bytes).
        kind: Wire kind of the value.
        value: Initial value. Numeric arrays are tuples.
        writable: Whether the host may write the variable.
        minimum: Lower bound for numeric writes.
        maximum: Upper bound for numeric writes.
        length: Capacity in bytes for opaque kinds.
        callback: Invoked when a ``CALLBACK`` variable is written.
    """

    identifier: bytes
    kind: MessageType
    value: ValueData = None
    writable: bool = True
    minimum: Scalar | None = None
    maximum: Scalar | None = None
    length: int | None = None
    callback: Callable[[], None] | None = None


class StaticVariableRegistry:
    """In-memory registry holding a fixed set of variables."""

    def __init__(self, variables: Iterable[Variable], *, clamp: bool = False) -> None:
        self.clamp = clamp
        self._variables: list[Variable] = []
        self._index: dict[bytes, int] = {}
        for variable in variables:
            self._add(variable)

    def _add(self, variable: Variable) -> None:
        identifier = bytes(variable.identifier)
        if not protocol.is_valid_message_id(identifier):
            raise ValueError(f"Invalid variable identifier {identifier!r}")
        if identifier in self._index:
            raise ValueError(f"Duplicate variable identifier {identifier!r}")
        if identifier in protocol.INTERNAL_IDS:
            logger.warning(
                "Variable %s shadows a reserved internal identifier",
                protocol.format_message_id(identifier),
            )
        # Validates the initial value against its kind.
        encoded = values.encode(TypedValue(variable.kind, variable.value))
        if variable.length is not None and len(encoded) > variable.length:
            raise ValueError(f"Initial value of {identifier!r} exceeds its length {variable.length}")
        if len(encoded) > protocol.MAX_PAYLOAD_SIZE:
            raise ValueError(f"Initial value of {identifier!r} exceeds the payload limit")
        variable.identifier = identifier
        self._index[identifier] = len(self._variables)
        self._variables.append(variable)

    def __len__(self) -> int:
        return len(self._variables)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._index

    def lookup(self, identifier: bytes) -> VariableHandle | None:
        index = self._index.get(bytes(identifier))
        if index is None:
            return None
        variable = self._variables[index]
        return VariableHandle(variable.identifier, variable.kind, variable.writable, index)

    def read(self, handle: VariableHandle) -> TypedValue:
        variable = self._variable(handle)
        return TypedValue(variable.kind, variable.value)

    def write(self, handle: VariableHandle, value: TypedValue) -> None:
        variable = self._variable(handle)
        if not variable.writable:
            raise WriteError(WriteErrorKind.READ_ONLY, f"{handle.identifier!r} is read-only")
        if value.kind != variable.kind:
            raise WriteError(
                WriteErrorKind.KIND_MISMATCH,
                f"{handle.identifier!r} holds {variable.kind.name}, got {MessageType(value.kind).name}",
            )
        variable.value = self._accept(variable, value.value)
        if variable.kind is MessageType.CALLBACK and variable.callback is not None:
            variable.callback()

    def enumerate(self) -> Iterator[bytes]:
        return (variable.identifier for variable in self._variables)

    def get(self, identifier: bytes) -> ValueData:
        """Return the current value of *identifier* (target-side access)."""
        return self._variables[self._index[bytes(identifier)]].value

    def set(self, identifier: bytes, value: ValueData) -> None:
        """Update *identifier* locally, bypassing the writable flag and bounds."""
        variable = self._variables[self._index[bytes(identifier)]]
        values.encode(TypedValue(variable.kind, value))
        variable.value = value

    def _variable(self, handle: VariableHandle) -> Variable:
        if not 0 <= handle.index < len(self._variables):
            raise WriteError(WriteErrorKind.UNKNOWN_VARIABLE, f"No variable at index {handle.index}")
        variable = self._variables[handle.index]
        if variable.identifier != handle.identifier:
            raise WriteError(WriteErrorKind.UNKNOWN_VARIABLE, f"Stale handle for {handle.identifier!r}")
        return variable

    def _accept(self, variable: Variable, incoming: ValueData) -> ValueData:
        kind = variable.kind
        if values.is_marker(kind):
            return None

        if values.is_opaque(kind):
            data = bytes(incoming or b"")
            if variable.length is not None and len(data) > variable.length:
                raise WriteError(
                    WriteErrorKind.OUT_OF_RANGE,
                    f"{len(data)} bytes exceed capacity {variable.length} of {variable.identifier!r}",
                )
            return data

        current_is_array = isinstance(variable.value, tuple)
        incoming_is_array = isinstance(incoming, tuple)
        if current_is_array and not incoming_is_array:
            # One element decodes as a scalar; it fills a one-element array.
            incoming = (incoming,)
            incoming_is_array = True
        if current_is_array != incoming_is_array or (
            current_is_array and len(incoming) != len(variable.value)  # type: ignore[arg-type]
        ):
            raise WriteError(
                WriteErrorKind.KIND_MISMATCH,
                f"Element count does not match {variable.identifier!r}",
            )
        if incoming_is_array:
            return tuple(self._bound(variable, item) for item in incoming)  # type: ignore[union-attr]
        return self._bound(variable, incoming)  # type: ignore[arg-type]

    def _bound(self, variable: Variable, item: Scalar) -> Scalar:
        if isinstance(item, float) and math.isnan(item):
            if variable.minimum is None and variable.maximum is None:
                return item
            raise WriteError(WriteErrorKind.OUT_OF_RANGE, f"NaN rejected for {variable.identifier!r}")
        if variable.minimum is not None and item < variable.minimum:
            if not self.clamp:
                raise WriteError(
                    WriteErrorKind.OUT_OF_RANGE,
                    f"{item} below minimum {variable.minimum} of {variable.identifier!r}",
                )
            return variable.minimum
        if variable.maximum is not None and item > variable.maximum:
            if not self.clamp:
                raise WriteError(
                    WriteErrorKind.OUT_OF_RANGE,
                    f"{item} above maximum {variable.maximum} of {variable.identifier!r}",
                )
            return variable.maximum
        return item
