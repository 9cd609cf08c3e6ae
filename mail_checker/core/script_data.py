"""
Decoder for the array literals embedded in mailbox pages.

The mailbox page ships its data as script assignments such as
``var GLOBALS=[null,"x",[["ld",[...]]],...];``. These are JavaScript
literals rather than JSON: strings may be single quoted and use ``\\x``
escapes, array slots may be elided (``[,1]``), object keys may be bare and
``undefined`` or even function expressions can appear. The decoder reads
that subset without executing anything; values that JSON cannot represent
come out as None.
"""
import json
import re
from typing import Any, List, Optional, Tuple

from mail_checker.utils.errors import MalformedMailboxDataError


_NUMBER = re.compile(r"-?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")

_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "0": "\0",
}

_LITERALS = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "NaN": None,
    "Infinity": None,
}


class _Reader:
    """Recursive-descent reader over one script's text."""

    def __init__(self, text: str, pos: int = 0):
        self.text = text
        self.pos = pos

    def error(self, message: str) -> MalformedMailboxDataError:
        snippet = self.text[self.pos:self.pos + 20]
        return MalformedMailboxDataError(f"{message} at offset {self.pos} near {snippet!r}")

    def skip_space(self) -> None:
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            if char.isspace():
                self.pos += 1
            elif text.startswith("//", self.pos):
                end = text.find("\n", self.pos)
                self.pos = len(text) if end < 0 else end + 1
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end < 0:
                    raise self.error("Unterminated comment")
                self.pos = end + 2
            else:
                break

    def peek(self) -> str:
        self.skip_space()
        if self.pos >= len(self.text):
            raise self.error("Unexpected end of data")
        return self.text[self.pos]

    def value(self) -> Any:
        char = self.peek()
        if char == "[":
            return self.array()
        if char == "{":
            return self.object()
        if char in "\"'":
            return self.string()
        match = _NUMBER.match(self.text, self.pos)
        if match:
            self.pos = match.end()
            literal = match.group()
            if literal.lstrip("-")[:2].lower() == "0x":
                return int(literal, 16)
            if re.fullmatch(r"-?\d+", literal):
                return int(literal)
            return float(literal)
        match = _IDENTIFIER.match(self.text, self.pos)
        if match:
            self.pos = match.end()
            name = match.group()
            if name == "function":
                self.skip_function()
                return None
            if name == "new":
                # new Date(...) and friends carry no plain data
                self.value()
                self.skip_call()
                return None
            if name in _LITERALS:
                return _LITERALS[name]
            # A bare reference to some other script variable
            self.skip_call()
            return None
        raise self.error("Unexpected character")

    def array(self) -> List[Any]:
        self.pos += 1  # [
        items: List[Any] = []
        expect_value = True
        while True:
            char = self.peek()
            if char == "]":
                self.pos += 1
                return items
            if char == ",":
                if expect_value:
                    items.append(None)  # elided slot
                self.pos += 1
                expect_value = True
                continue
            if not expect_value:
                raise self.error("Expected ',' or ']'")
            items.append(self.value())
            expect_value = False

    def object(self) -> dict:
        self.pos += 1  # {
        result = {}
        while True:
            char = self.peek()
            if char == "}":
                self.pos += 1
                return result
            if char == ",":
                self.pos += 1
                continue
            if char in "\"'":
                key = self.string()
            else:
                match = _IDENTIFIER.match(self.text, self.pos) or _NUMBER.match(self.text, self.pos)
                if not match:
                    raise self.error("Expected an object key")
                self.pos = match.end()
                key = match.group()
            if self.peek() != ":":
                raise self.error("Expected ':'")
            self.pos += 1
            result[str(key)] = self.value()

    def string(self) -> str:
        quote = self.text[self.pos]
        self.pos += 1
        chunks = []
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self.error("Unterminated string")
            char = text[self.pos]
            if char == quote:
                self.pos += 1
                return "".join(chunks)
            if char != "\\":
                chunks.append(char)
                self.pos += 1
                continue
            escape = text[self.pos + 1:self.pos + 2]
            if escape == "x":
                chunks.append(chr(int(self._hex(self.pos + 2, 2), 16)))
                self.pos += 4
            elif escape == "u":
                chunks.append(chr(int(self._hex(self.pos + 2, 4), 16)))
                self.pos += 6
            elif escape == "\n":
                self.pos += 2  # line continuation
            else:
                chunks.append(_ESCAPES.get(escape, escape))
                self.pos += 2

    def _hex(self, start: int, length: int) -> str:
        digits = self.text[start:start + length]
        if len(digits) != length or not all(c in "0123456789abcdefABCDEF" for c in digits):
            raise self.error("Invalid escape sequence")
        return digits

    def skip_balanced(self, opener: str, closer: str) -> None:
        """Skip a bracketed region, honouring nested brackets and strings."""
        if self.peek() != opener:
            raise self.error(f"Expected '{opener}'")
        depth = 0
        text = self.text
        while self.pos < len(text):
            char = text[self.pos]
            if char in "\"'":
                self.string()
                continue
            if char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    self.pos += 1
                    return
            self.pos += 1
        raise self.error(f"Unbalanced '{opener}'")

    def skip_function(self) -> None:
        self.skip_space()
        match = _IDENTIFIER.match(self.text, self.pos)
        if match:
            self.pos = match.end()
        self.skip_balanced("(", ")")
        self.skip_balanced("{", "}")

    def skip_call(self) -> None:
        """Skip member accesses and call arguments after an identifier."""
        while self.pos < len(self.text):
            self.skip_space()
            if self.pos >= len(self.text):
                return
            char = self.text[self.pos]
            if char == "(":
                self.skip_balanced("(", ")")
            elif char == ".":
                self.pos += 1
                self.skip_space()
                match = _IDENTIFIER.match(self.text, self.pos)
                if not match:
                    raise self.error("Expected a property name")
                self.pos = match.end()
            else:
                return


def decode_literal(text: str, pos: int = 0) -> Tuple[Any, int]:
    """
    Decode one literal value starting at ``pos``.

    Args:
        text: Script text.
        pos: Offset of the first character of the literal.

    Returns:
        A tuple (value, offset just past the literal).

    Raises:
        MalformedMailboxDataError: If the text is not a supported literal.
    """
    reader = _Reader(text, pos)
    value = reader.value()
    return value, reader.pos


def json_copy(value: Any) -> Any:
    """
    Deep-copy a decoded value through JSON.

    Guarantees the result only holds lists, dicts, strings, numbers,
    booleans and None.

    Raises:
        MalformedMailboxDataError: If the value is not JSON representable.
    """
    try:
        return json.loads(json.dumps(value, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise MalformedMailboxDataError(f"Decoded data is not plain JSON: {e}") from e


def find_assignment(script: str, name: str) -> Optional[Any]:
    """
    Find ``name = <literal>`` in a script and decode the literal.

    Args:
        script: Script text.
        name: Variable name, e.g. "GLOBALS".

    Returns:
        The decoded value, or None if the script does not assign ``name``.

    Raises:
        MalformedMailboxDataError: If the assigned literal cannot be decoded.
    """
    pattern = re.compile(r"(?:^|[;\s{(,])(?:var\s+|window\.)?" + re.escape(name) + r"\s*=(?!=)\s*")
    match = pattern.search(script)
    if match is None:
        return None
    value, _ = decode_literal(script, match.end())
    return json_copy(value)
