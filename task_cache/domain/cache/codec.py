"""
Cache Value Codecs

Encode cached values to the store's text representation and back. The cache
service is type-agnostic; the codec decides what a value looks like.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Generic, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from ...infrastructure.redis.exceptions import SerializationException

T = TypeVar("T")


class Codec(ABC, Generic[T]):
    """Bidirectional mapping between values of type T and stored text."""

    @abstractmethod
    def encode(self, value: T) -> str:
        """Raises SerializationException when the value cannot be encoded."""

    @abstractmethod
    def decode(self, raw: str) -> T:
        """Raises SerializationException when the text cannot be decoded."""


class JsonCodec(Codec[Any]):
    """JSON codec; datetimes, UUIDs and other scalars are stored as strings."""

    def encode(self, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise SerializationException(
                message=f"Value of type {type(value).__name__} is not JSON serializable",
                value_type=type(value).__name__,
                original_error=e,
            )

    def decode(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SerializationException(
                message="Stored value is not valid JSON",
                original_error=e,
            )


class PydanticCodec(Codec[T]):
    """
    Codec for a declared type, validated with pydantic on the way out.

    Works for models, lists of models and plain typed containers, e.g.
    ``PydanticCodec(List[TaskSummary])``.
    """

    def __init__(self, value_type: Type[T]):
        self.value_type = value_type
        self._adapter = TypeAdapter(value_type)

    def encode(self, value: T) -> str:
        try:
            return self._adapter.dump_json(value).decode("utf-8")
        except (ValueError, TypeError) as e:
            raise SerializationException(
                message=f"Cannot encode value as {self.value_type!r}",
                value_type=type(value).__name__,
                original_error=e,
            )

    def decode(self, raw: str) -> T:
        try:
            return self._adapter.validate_json(raw)
        except ValidationError as e:
            raise SerializationException(
                message=f"Stored value does not match {self.value_type!r}",
                original_error=e,
            )
