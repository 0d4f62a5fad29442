"""Setting value validators, formatters, and write conversions.

Catalog files refer to these by type string:

    string              ASCII value without commas or line breaks, rendered with ``str``
    number              integer or decimal number
    hex:<n>             hexadecimal string of exactly ``n`` digits, upper-cased
    range:<min>:<max>   number within the inclusive range

Conversions (``convert_for_write``):

    head:<n>            keep the first ``n`` values
"""

from __future__ import annotations

import math
import re
from typing import Any

from rfcgate.core.errors import CatalogValidationError
from rfcgate.core.model import Conversion, Validator

_HEX_RE = re.compile(r"^[0-9A-F]+$")
_VALIDATOR_RE = re.compile(r"^(string|number|hex:(\d+)|range:(-?\d+):(-?\d+))$")
_CONVERSION_RE = re.compile(r"^head:(\d+)$")
_FRAME_BREAKERS = ",\r\n"


def to_string(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        raise TypeError(f"String expected, got {value!r}")
    text = str(value)
    if not text.isascii() or any(ch in text for ch in _FRAME_BREAKERS):
        raise ValueError(f"Value must be ASCII without commas or line breaks: {value!r}")
    return text


def to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise TypeError("Not a valid number")
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise TypeError(f"Not a valid number: {value!r}") from None
    if isinstance(number, float) and not math.isfinite(number):
        raise TypeError(f"Not a valid number: {value!r}")
    return number


def hex_string(nchars: int) -> Validator:
    def validate(value: Any) -> str:
        if not isinstance(value, str):
            raise TypeError(f"String expected, got {value!r}")
        if len(value) != nchars:
            raise ValueError(f"Wrong string length, expected {nchars} chars, got string {value}")
        value = value.upper()
        if not _HEX_RE.match(value):
            raise ValueError(f"Not a valid hexadecimal value {value}")
        return value

    validate.__name__ = f"hex_{nchars}"
    return validate


def range_number(minimum: int, maximum: int) -> Validator:
    def validate(value: Any) -> int | float:
        number = to_number(value)
        if number < minimum:
            raise ValueError(f"Value too small - {number}")
        if number > maximum:
            raise ValueError(f"Value too large - {number}")
        return number

    validate.__name__ = f"range_{minimum}_{maximum}"
    return validate


def head(count: int) -> Conversion:
    def convert(values: list[Any]) -> list[Any]:
        return list(values[:count])

    convert.__name__ = f"head_{count}"
    return convert


def parse_validator(spec: str, *, context: str) -> Validator:
    match = _VALIDATOR_RE.match(spec.strip())
    if not match:
        raise CatalogValidationError(f"{context}: unknown value type '{spec}'")
    kind = match.group(1)
    if kind == "string":
        return to_string
    if kind == "number":
        return to_number
    if kind.startswith("hex:"):
        nchars = int(match.group(2))
        if nchars == 0:
            raise CatalogValidationError(f"{context}: hex width must be positive")
        return hex_string(nchars)
    minimum, maximum = int(match.group(3)), int(match.group(4))
    if minimum > maximum:
        raise CatalogValidationError(f"{context}: range minimum exceeds maximum")
    return range_number(minimum, maximum)


def parse_conversion(spec: str, *, context: str) -> Conversion:
    match = _CONVERSION_RE.match(spec.strip())
    if not match:
        raise CatalogValidationError(f"{context}: unknown conversion '{spec}'")
    return head(int(match.group(1)))
