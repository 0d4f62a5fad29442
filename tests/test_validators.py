from __future__ import annotations

import pytest

from rfcgate.core.errors import CatalogValidationError
from rfcgate.core.model import format_args
from rfcgate.core.validators import parse_conversion, parse_validator, to_number, to_string


def test_number_accepts_ints_floats_and_numeric_strings() -> None:
    assert to_number(5) == 5
    assert to_number("12") == 12
    assert to_number("2.5") == 2.5
    assert to_number(" 7 ") == 7


@pytest.mark.parametrize("value", ["abc", True, None, "", "nan", "-inf", float("nan"), float("inf")])
def test_number_rejects_non_numbers(value) -> None:
    with pytest.raises(TypeError):
        to_number(value)


def test_hex_validator_checks_width_and_digits() -> None:
    validate = parse_validator("hex:4", context="test")
    assert validate("00ff") == "00FF"
    with pytest.raises(ValueError, match="Wrong string length"):
        validate("0FF")
    with pytest.raises(ValueError, match="Not a valid hexadecimal"):
        validate("00GZ")
    with pytest.raises(TypeError):
        validate(255)


def test_range_validator_bounds_are_inclusive() -> None:
    validate = parse_validator("range:0:83", context="test")
    assert validate(0) == 0
    assert validate("83") == 83
    with pytest.raises(ValueError, match="Value too small"):
        validate(-1)
    with pytest.raises(ValueError, match="Value too large"):
        validate(84)


def test_string_validator_rejects_containers() -> None:
    validate = parse_validator("string", context="test")
    assert validate(42) == "42"
    with pytest.raises(TypeError):
        validate(["a"])


@pytest.mark.parametrize("value", ["X1\rINIT", "a\nb", "a,b", "café"])
def test_string_rejects_values_that_break_framing(value: str) -> None:
    with pytest.raises(ValueError, match="ASCII without commas or line breaks"):
        to_string(value)


@pytest.mark.parametrize("spec", ["colour", "hex:0", "range:5:1", "hex"])
def test_bad_validator_specs_rejected(spec: str) -> None:
    with pytest.raises(CatalogValidationError):
        parse_validator(spec, context="test")


def test_head_conversion() -> None:
    assert parse_conversion("head:2", context="test")([1, 2, 3]) == [1, 2]
    with pytest.raises(CatalogValidationError):
        parse_conversion("tail:2", context="test")


def test_format_args_renders_integral_floats_as_ints() -> None:
    assert format_args([5.0, 2.5, "00FF", 7]) == ("5", "2.5", "00FF", "7")
