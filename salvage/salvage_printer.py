"""
Renders values the way templates print them.

`Printer.pformat` is the default `%v` rendering used by actions; the `sprint`
family implements the `print`, `println` and `printf` builtins.
"""
import collections.abc
import dataclasses
import math
import re
from decimal import Decimal
from typing import Any, List

from salvage.salvage_datatypes import NO_VALUE, MISSING


def format_float(value: float, verb: str = "v") -> str:
    """Shortest representation, switching to exponent form outside [1e-4, 1e6)."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    exact = Decimal(repr(value))
    sign, raw_digits, exponent = exact.as_tuple()
    digits = "".join(str(d) for d in raw_digits).rstrip("0") or "0"
    # decimal exponent of the leading digit
    exp = len(raw_digits) + exponent - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        marker = "E" if verb == "G" else "e"
        return f"{prefix}{mantissa}{marker}{'-' if exp < 0 else '+'}{abs(exp):02d}"
    text = format(abs(exact), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return prefix + text


def quote(text: str) -> str:
    out = ['"']
    for ch in text:
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\t":
            out.append("\\t")
        elif ch == "\r":
            out.append("\\r")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


class Printer:
    """Formats Python values using Go's default `%v` conventions."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj: Any) -> str:
        """Public entry point to format an object."""
        return self._get_handler(obj)(obj)

    def _get_handler(self, obj):
        if obj is NO_VALUE or obj is MISSING:
            return self._pformat_no_value
        handler = self._handlers.get(type(obj))
        if handler is not None:
            return handler
        if isinstance(obj, BaseException):
            return str
        if isinstance(obj, str):
            return str
        if isinstance(obj, bool):
            return self._pformat_bool
        if isinstance(obj, int):
            return self._pformat_int
        if isinstance(obj, float):
            return format_float
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_map
        if isinstance(obj, (list, tuple, set, frozenset)):
            return self._pformat_list
        return self._pformat_object

    def _create_handlers(self):
        return {
            str: str,
            bool: self._pformat_bool,
            int: self._pformat_int,
            float: format_float,
            type(None): self._pformat_none,
            list: self._pformat_list,
            tuple: self._pformat_list,
            dict: self._pformat_map,
            bytes: self._pformat_bytes,
        }

    def _pformat_no_value(self, obj):
        return "<no value>"

    def _pformat_none(self, obj):
        return "<nil>"

    def _pformat_bool(self, obj):
        return "true" if obj else "false"

    def _pformat_int(self, obj):
        return str(int(obj))

    def _pformat_bytes(self, obj):
        return "[" + " ".join(str(b) for b in obj) + "]"

    def _pformat_list(self, obj):
        return "[" + " ".join(self.pformat(item) for item in obj) + "]"

    def _pformat_map(self, obj):
        keys = list(obj.keys())
        try:
            keys.sort()
        except TypeError:
            pass
        return "map[" + " ".join(f"{self.pformat(k)}:{self.pformat(obj[k])}" for k in keys) + "]"

    def _pformat_object(self, obj):
        if type(obj).__str__ is not object.__str__:
            return str(obj)
        if dataclasses.is_dataclass(obj):
            values = [getattr(obj, f.name) for f in dataclasses.fields(obj)]
            return "{" + " ".join(self.pformat(v) for v in values) + "}"
        fields = getattr(obj, "__dict__", None)
        if fields is not None and not callable(obj):
            return "{" + " ".join(self.pformat(v) for v in fields.values()) + "}"
        return repr(obj)

    # --- print builtins ---

    def sprint(self, *args) -> str:
        """Adds spaces between operands when neither side is a string."""
        out: List[str] = []
        for i, arg in enumerate(args):
            if i > 0 and not isinstance(arg, str) and not isinstance(args[i - 1], str):
                out.append(" ")
            out.append(self.pformat(arg))
        return "".join(out)

    def sprintln(self, *args) -> str:
        return " ".join(self.pformat(a) for a in args) + "\n"

    _VERB_RE = re.compile(r"%([-+# 0]*)(\d+)?(?:\.(\d*))?([a-zA-Z%])")

    def sprintf(self, fmt: str, *args) -> str:
        out: List[str] = []
        argi = 0
        pos = 0
        for m in self._VERB_RE.finditer(fmt):
            out.append(fmt[pos:m.start()])
            pos = m.end()
            flags, width, prec, verb = m.group(1), m.group(2), m.group(3), m.group(4)
            if verb == "%":
                out.append("%")
                continue
            if argi >= len(args):
                out.append(f"%!{verb}(MISSING)")
                continue
            arg = args[argi]
            argi += 1
            out.append(self._format_verb(arg, flags, width, prec, verb))
        out.append(fmt[pos:])
        if argi < len(args):
            extra = ", ".join(f"{type(a).__name__}={self.pformat(a)}" for a in args[argi:])
            out.append(f"%!(EXTRA {extra})")
        return "".join(out)

    def _bad_verb(self, arg, verb):
        return f"%!{verb}({type(arg).__name__}={self.pformat(arg)})"

    def _format_verb(self, arg, flags: str, width, prec, verb: str) -> str:
        numeric = False
        if verb in ("v", "s"):
            if verb == "s" and isinstance(arg, bytes):
                text = arg.decode("utf-8", "replace")
            else:
                text = self.pformat(arg)
            if prec:
                text = text[:int(prec)]
        elif verb == "q":
            if isinstance(arg, int) and not isinstance(arg, bool):
                text = "'" + chr(arg) + "'"
            elif isinstance(arg, str):
                text = quote(arg)
            else:
                return self._bad_verb(arg, verb)
        elif verb == "t":
            if not isinstance(arg, bool):
                return self._bad_verb(arg, verb)
            text = self._pformat_bool(arg)
        elif verb == "T":
            text = "<nil>" if arg is None else type(arg).__name__
        elif verb == "c":
            if not isinstance(arg, int) or isinstance(arg, bool):
                return self._bad_verb(arg, verb)
            text = chr(arg)
        elif verb in "dboxX":
            if isinstance(arg, int) and not isinstance(arg, bool):
                fmt = {"d": "d", "b": "b", "o": "o", "x": "x", "X": "X"}[verb]
                text = format(arg, ("+" if "+" in flags else "") + fmt)
                numeric = True
            elif verb in "xX" and isinstance(arg, (str, bytes)):
                data = arg.encode("utf-8") if isinstance(arg, str) else arg
                text = data.hex()
                if verb == "X":
                    text = text.upper()
            else:
                return self._bad_verb(arg, verb)
        elif verb in "eEfFgG":
            if isinstance(arg, bool) or not isinstance(arg, (int, float)):
                return self._bad_verb(arg, verb)
            value = float(arg)
            if verb in "gG" and prec is None:
                text = format_float(value, verb)
                if "+" in flags and value >= 0:
                    text = "+" + text
            else:
                fmt = ("+" if "+" in flags else "") + "." + (prec if prec else ("0" if prec == "" else "6")) + verb
                text = format(value, fmt)
            numeric = True
        else:
            return self._bad_verb(arg, verb)
        if width and len(text) < int(width):
            pad = int(width) - len(text)
            if "-" in flags:
                text = text + " " * pad
            elif "0" in flags and numeric:
                sign = text[0] if text[:1] in "+-" else ""
                text = sign + "0" * pad + text[len(sign):]
            else:
                text = " " * pad + text
        return text
