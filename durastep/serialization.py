"""Encoding of step results for the checkpoint store.

The store treats outputs as opaque text. A serializer is chosen per call, so
one run can mix plain JSON results with typed pydantic results.
"""

from __future__ import annotations

import json
from typing import Any, Generic, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from .errors import SerializationFailure

T = TypeVar("T")


class Serializer(Protocol[T]):
    """Encode a step result to text and back."""

    def encode(self, value: T) -> str: ...

    def decode(self, data: str) -> T: ...


class JsonSerializer:
    """Plain JSON. Callers always get the decoded form, so tuples come back as lists."""

    def encode(self, value: Any) -> str:
        try:
            return json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationFailure(
                f"Cannot encode result of type '{type(value).__name__}' as JSON: {e}"
            ) from e

    def decode(self, data: str) -> Any:
        try:
            return json.loads(data)
        except ValueError as e:
            raise SerializationFailure(f"Stored output is not valid JSON: {e}") from e


class PydanticSerializer(Generic[T]):
    """Validate and dump results through a pydantic ``TypeAdapter``.

    Works for models, dataclasses and standard typing constructs, e.g.
    ``PydanticSerializer(list[Laptop])``.
    """

    def __init__(self, type_: Any) -> None:
        self._adapter: TypeAdapter[T] = TypeAdapter(type_)
        self._type = type_

    def encode(self, value: T) -> str:
        try:
            return self._adapter.dump_json(value).decode()
        except Exception as e:
            raise SerializationFailure(
                f"Failed to serialize result as {self._type!r}: {e}"
            ) from e

    def decode(self, data: str) -> T:
        try:
            return self._adapter.validate_json(data)
        except ValidationError as e:
            raise SerializationFailure(
                f"Stored output does not match {self._type!r}: {e}"
            ) from e


DEFAULT_SERIALIZER = JsonSerializer()
