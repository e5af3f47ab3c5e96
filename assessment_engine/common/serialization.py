"""
Serialization Utilities

This module converts engine objects (dataclasses, enums, datetimes, nested
containers) into JSON-compatible structures. Domain models use the
SerializableMixin so that stores and the HTTP layer share one representation.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List
from dataclasses import is_dataclass, fields


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Serialize an object to JSON-compatible Python data.

    Args:
        obj: The object to serialize
        exclude_none: Whether to drop None values from mappings

    Returns:
        Serialized structure built from dicts, lists and primitives
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, (list, tuple, set)):
        return [serialize(item, exclude_none) for item in obj]

    if isinstance(obj, dict):
        return {
            str(serialize(key)): serialize(value, exclude_none)
            for key, value in obj.items()
            if not (exclude_none and value is None)
        }

    # Objects with their own representation take precedence over field walking
    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none)

    if is_dataclass(obj):
        return {
            f.name: serialize(getattr(obj, f.name), exclude_none)
            for f in fields(obj)
            if not (exclude_none and getattr(obj, f.name) is None)
        }

    if hasattr(obj, '__dict__'):
        return serialize(
            {k: v for k, v in obj.__dict__.items() if not k.startswith('_')},
            exclude_none
        )

    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Args:
        obj: The object to serialize
        pretty: Whether to format the JSON with indentation
        exclude_none: Whether to exclude None values

    Returns:
        JSON string representation
    """
    indent = 2 if pretty else None
    return json.dumps(serialize(obj, exclude_none), indent=indent, ensure_ascii=False, default=str)


def parse_datetime(value: Any) -> Any:
    """Parse an ISO timestamp, passing through datetimes and None."""
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    return value


class SerializableMixin:
    """
    Mixin that provides serialization capabilities to a dataclass.

    Classes using this mixin must define:
    1. __serializable_fields__ - list of field names to include in serialization
    2. __optional_fields__ - list of field names that are optional during deserialization

    Models with nested or enum fields override from_dict to rebuild them.
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert the object to a dictionary."""
        result = {}
        for name in self.__serializable_fields__:
            if hasattr(self, name):
                value = getattr(self, name)
                # Nested mixins serialize through their own to_dict
                result[name] = serialize(value)
        return result

    def to_json(self, pretty: bool = False) -> str:
        """Convert the object to a JSON string."""
        return to_json(self.to_dict(), pretty)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SerializableMixin':
        """Create an instance from a dictionary."""
        init_kwargs = {}
        for name in cls.__serializable_fields__:
            if name in data:
                init_kwargs[name] = data[name]
            elif name not in cls.__optional_fields__:
                raise ValueError(f"Missing required field: {name}")

        return cls(**init_kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> 'SerializableMixin':
        """Create an instance from a JSON string."""
        return cls.from_dict(json.loads(json_str))
