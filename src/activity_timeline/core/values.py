"""Typed attribute values and Solidity type coercion."""

import re
from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HEX_PATTERN = re.compile(r"^0x[0-9a-fA-F]*$")
_SIZED_TYPE_PATTERN = re.compile(r"^(uint|int|bytes)(\d+)$")


class AttributeKind(StrEnum):
    """Tag of an attribute value."""

    ADDRESS = "address"
    STRING = "string"
    UINT = "uint"
    INT = "int"
    BOOL = "bool"
    BYTES = "bytes"
    GENERALISED_TIME = "generalised_time"


class AttributeValue(BaseModel):
    """
    Tagged attribute value attached to tokens and activities.

    Attributes
    ----------
    kind : AttributeKind
        Value tag
    value : Any
        Raw value, its Python type follows ``kind``

    """

    model_config = ConfigDict(frozen=True)

    kind: AttributeKind
    value: Any

    @classmethod
    def address(cls, value: str) -> "AttributeValue":
        return cls(kind=AttributeKind.ADDRESS, value=value)

    @classmethod
    def string(cls, value: str) -> "AttributeValue":
        return cls(kind=AttributeKind.STRING, value=value)

    @classmethod
    def uint(cls, value: int) -> "AttributeValue":
        if value < 0:
            msg = f"uint attribute cannot be negative: {value}"
            raise ValueError(msg)
        return cls(kind=AttributeKind.UINT, value=value)

    @classmethod
    def integer(cls, value: int) -> "AttributeValue":
        return cls(kind=AttributeKind.INT, value=value)

    @classmethod
    def boolean(cls, value: bool) -> "AttributeValue":
        return cls(kind=AttributeKind.BOOL, value=value)

    @classmethod
    def hex_bytes(cls, value: str) -> "AttributeValue":
        return cls(kind=AttributeKind.BYTES, value=value)

    @classmethod
    def generalised_time(cls, value: datetime) -> "AttributeValue":
        return cls(kind=AttributeKind.GENERALISED_TIME, value=value)

    def _value_of(self, kind: AttributeKind) -> Any:
        return self.value if self.kind == kind else None

    @property
    def address_value(self) -> str | None:
        return self._value_of(AttributeKind.ADDRESS)

    @property
    def string_value(self) -> str | None:
        return self._value_of(AttributeKind.STRING)

    @property
    def uint_value(self) -> int | None:
        return self._value_of(AttributeKind.UINT)

    @property
    def int_value(self) -> int | None:
        return self._value_of(AttributeKind.INT)

    @property
    def bool_value(self) -> bool | None:
        return self._value_of(AttributeKind.BOOL)

    @property
    def generalised_time_value(self) -> datetime | None:
        return self._value_of(AttributeKind.GENERALISED_TIME)

    def display(self) -> str:
        """Human readable rendering used by the CLI."""
        if self.kind == AttributeKind.GENERALISED_TIME:
            return self.value.isoformat()
        return str(self.value)


AttributeMap = dict[str, AttributeValue]


def merge_attributes(base: Mapping[str, AttributeValue], override: Mapping[str, AttributeValue]) -> AttributeMap:
    """
    Merge two attribute maps, values from ``override`` win on name collision.

    Parameters
    ----------
    base : Mapping[str, AttributeValue]
        Lower-precedence attributes
    override : Mapping[str, AttributeValue]
        Higher-precedence attributes

    Returns
    -------
    AttributeMap
        New map, insertion order is ``base`` keys first then new ``override`` keys

    """
    merged = dict(base)
    merged.update(override)
    return merged


def _parse_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return int(text, 0)
        except ValueError:
            pass
        try:
            return int(text)
        except ValueError:
            return None
    return None


class SolidityType(StrEnum):
    """Solidity parameter types recognised when coercing event data."""

    ADDRESS = "address"
    BOOL = "bool"
    STRING = "string"
    BYTES = "bytes"
    UINT = "uint"
    INT = "int"

    @classmethod
    def parse(cls, type_name: str) -> "SolidityType | None":
        """
        Map a declared Solidity type name to its family.

        Sized variants (``uint8`` to ``uint256``, ``int8`` to ``int256``,
        ``bytes1`` to ``bytes32``) map to their unsized family.

        Parameters
        ----------
        type_name : str
            Declared type, e.g. ``uint256``

        Returns
        -------
        SolidityType | None
            Type family or None when unrecognised

        """
        name = type_name.strip()
        try:
            return cls(name)
        except ValueError:
            pass

        match = _SIZED_TYPE_PATTERN.match(name)
        if not match:
            return None
        family, size = match.group(1), int(match.group(2))
        if family == "bytes":
            return cls.BYTES if 1 <= size <= 32 else None
        if size % 8 or not 8 <= size <= 256:
            return None
        return cls(family)

    def coerce(self, value: AttributeValue) -> AttributeValue:
        """
        Convert ``value`` to the attribute kind matching this Solidity type.

        Values that cannot be converted are returned unchanged.

        Parameters
        ----------
        value : AttributeValue
            Raw attribute from event data

        Returns
        -------
        AttributeValue
            Coerced attribute

        """
        raw = value.value

        if self is SolidityType.ADDRESS:
            if isinstance(raw, str) and _ADDRESS_PATTERN.match(raw.strip()):
                return AttributeValue.address(raw.strip())
            return value

        if self is SolidityType.UINT:
            number = _parse_int(raw) if value.kind != AttributeKind.GENERALISED_TIME else None
            if number is None or number < 0:
                return value
            return AttributeValue.uint(number)

        if self is SolidityType.INT:
            number = _parse_int(raw) if value.kind != AttributeKind.GENERALISED_TIME else None
            if number is None:
                return value
            return AttributeValue.integer(number)

        if self is SolidityType.BOOL:
            if isinstance(raw, bool):
                return AttributeValue.boolean(raw)
            if isinstance(raw, int):
                return AttributeValue.boolean(raw != 0)
            if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
                return AttributeValue.boolean(raw.strip().lower() == "true")
            return value

        if self is SolidityType.BYTES:
            if isinstance(raw, str) and _HEX_PATTERN.match(raw.strip()):
                return AttributeValue.hex_bytes(raw.strip())
            return value

        return AttributeValue.string(value.display())
