import dataclasses

import pytest

from salvage.salvage_datatypes import NO_VALUE
from salvage.salvage_printer import Printer, format_float, quote


@pytest.fixture
def printer():
    return Printer()


@dataclasses.dataclass
class Point:
    x: int
    y: int


class Named:
    def __str__(self):
        return "named"


# (id, object, expected_string)
FORMAT_TEST_CASES = [
    ("str", "hello", "hello"),
    ("int", 123, "123"),
    ("float_integral", 5.0, "5"),
    ("float", 4.6, "4.6"),
    ("float_large", 1e6, "1e+06"),
    ("float_small", 1e-05, "1e-05"),
    ("bool_true", True, "true"),
    ("bool_false", False, "false"),
    ("none", None, "<nil>"),
    ("no_value", NO_VALUE, "<no value>"),
    ("list", [1, "a", True], "[1 a true]"),
    ("tuple", (2, "two"), "[2 two]"),
    ("nested", [[1, 2], []], "[[1 2] []]"),
    ("map_sorted", {"b": 2, "a": 1}, "map[a:1 b:2]"),
    ("bytes", b"AB", "[65 66]"),
    ("dataclass", Point(1, 2), "{1 2}"),
    ("str_method", Named(), "named"),
    ("exception", ValueError("boom"), "boom"),
]


@pytest.mark.parametrize("case_id, obj, expected", FORMAT_TEST_CASES, ids=[c[0] for c in FORMAT_TEST_CASES])
def test_pformat(printer, case_id, obj, expected):
    assert printer.pformat(obj) == expected


def test_format_float_special_values():
    assert format_float(float("inf")) == "+Inf"
    assert format_float(float("-inf")) == "-Inf"
    assert format_float(float("nan")) == "NaN"
    assert format_float(-0.0) == "-0"
    assert format_float(123456.0) == "123456"
    assert format_float(0.0001) == "0.0001"


def test_quote_escapes():
    assert quote('a"b\\c\n') == '"a\\"b\\\\c\\n"'


def test_sprint_spacing(printer):
    assert printer.sprint("prefix", 0, 1, "suffix") == "prefix0 1suffix"
    assert printer.sprint("a", "b") == "ab"
    assert printer.sprint(1, 2) == "1 2"


def test_sprintln(printer):
    assert printer.sprintln("a", 1) == "a 1\n"


@pytest.mark.parametrize("fmt, args, expected", [
    ("%d items", (3,), "3 items"),
    ("%05.1f|%x", (3.14159, 255), "003.1|ff"),
    ("%-4s|", ("ab",), "ab  |"),
    ("%q", ("hi",), '"hi"'),
    ("%v %v", ([1, 2], {"k": "v"}), "[1 2] map[k:v]"),
    ("%t", (True,), "true"),
    ("%T", (1.5,), "float"),
    ("100%%", (), "100%"),
    ("%d", (), "%!d(MISSING)"),
    ("%d", ("x",), "%!d(str=x)"),
    ("%s", ("a", 1), "a%!(EXTRA int=1)"),
])
def test_sprintf(printer, fmt, args, expected):
    assert printer.sprintf(fmt, *args) == expected
