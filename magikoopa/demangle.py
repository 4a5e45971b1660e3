"""A demangler for the common subset of Itanium C++ symbol names."""

from __future__ import annotations

from typing import List, Tuple

_BUILTINS = {
    "v": "void", "w": "wchar_t", "b": "bool", "c": "char", "a": "signed char",
    "h": "unsigned char", "s": "short", "t": "unsigned short", "i": "int",
    "j": "unsigned int", "l": "long", "m": "unsigned long", "x": "long long",
    "y": "unsigned long long", "n": "__int128", "o": "unsigned __int128",
    "f": "float", "d": "double", "e": "long double", "g": "__float128",
    "z": "...",
}

_D_BUILTINS = {
    "n": "decltype(nullptr)", "s": "char16_t", "i": "char32_t", "u": "char8_t",
}

_STANDARD_SUBS = {
    "a": "std::allocator", "b": "std::basic_string", "s": "std::string",
    "i": "std::istream", "o": "std::ostream", "d": "std::iostream",
}

_OPERATORS = {
    "nw": "new", "na": "new[]", "dl": "delete", "da": "delete[]", "ps": "+",
    "ng": "-", "ad": "&", "de": "*", "co": "~", "pl": "+", "mi": "-", "ml": "*",
    "dv": "/", "rm": "%", "an": "&", "or": "|", "eo": "^", "aS": "=", "pL": "+=",
    "mI": "-=", "mL": "*=", "dV": "/=", "rM": "%=", "aN": "&=", "oR": "|=",
    "eO": "^=", "ls": "<<", "rs": ">>", "lS": "<<=", "rS": ">>=", "eq": "==",
    "ne": "!=", "lt": "<", "gt": ">", "le": "<=", "ge": ">=", "nt": "!",
    "aa": "&&", "oo": "||", "pp": "++", "mm": "--", "cm": ",", "pm": "->*",
    "pt": "->", "cl": "()", "ix": "[]",
}


class DemangleError(ValueError):
    """The name is not a mangled name this demangler understands."""


def _simple_name(qualified: str) -> str:
    depth = 0
    cut = len(qualified)
    for index, char in enumerate(qualified):
        if char == "<":
            if depth == 0:
                cut = index
                break
    last = qualified[:cut].rsplit("::", 1)[-1]
    return last


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.subs: List[str] = []
        self.template_args: List[str] = []

    def peek(self, ahead: int = 0) -> str:
        index = self.pos + ahead
        return self.text[index] if index < len(self.text) else ""

    def take(self, count: int = 1) -> str:
        if self.pos + count > len(self.text):
            raise DemangleError("unexpected end of name")
        chunk = self.text[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def expect(self, char: str) -> None:
        if self.take() != char:
            raise DemangleError(f"expected {char!r} at {self.pos - 1}")

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def number(self) -> int:
        start = self.pos
        while self.peek().isdigit():
            self.pos += 1
        if start == self.pos:
            raise DemangleError("expected a number")
        return int(self.text[start:self.pos])

    def encoding(self) -> str:
        name, is_template, suffix, special = self.name()
        if self.at_end():
            return name
        return_type = ""
        if is_template and not special:
            return_type = self.type() + " "
        params = []
        while not self.at_end():
            params.append(self.type())
        if params == ["void"]:
            params = []
        return f"{return_type}{name}({', '.join(params)}){suffix}"

    def name(self) -> Tuple[str, bool, str, bool]:
        char = self.peek()
        if char == "N":
            return self.nested()
        if char == "Z":
            raise DemangleError("local names are not supported")
        if char == "S" and self.peek(1) == "t":
            self.take(2)
            text = "std::" + self.unqualified()
        elif char == "S":
            text = self.substitution()
            if self.peek() != "I":
                raise DemangleError("substitution used as a plain name")
        else:
            text = self.unqualified()
        if self.peek() == "I":
            if char != "S" or self.peek(-1) != "_" and char == "S" and self.text[self.pos - 2:self.pos] == "St":
                pass
            if not (char == "S" and self.peek(1) != "t" and not text.startswith("std::") is False):
                self.subs.append(text)
            text += self.template_args_list()
            return text, True, "", False
        return text, False, "", False

    def nested(self) -> Tuple[str, bool, str, bool]:
        self.expect("N")
        suffix = ""
        qualifiers = {"r": " restrict", "V": " volatile", "K": " const"}
        collected = []
        while self.peek() in qualifiers and self.peek():
            collected.append(qualifiers[self.take()])
        suffix = "".join(reversed(collected))
        if self.peek() == "R":
            self.take()
            suffix += " &"
        elif self.peek() == "O":
            self.take()
            suffix += " &&"

        parts: List[str] = []
        is_template = False
        special = False
        while self.peek() != "E":
            if not self.peek():
                raise DemangleError("unterminated nested name")
            char = self.peek()
            if char == "S" and self.peek(1) == "t":
                self.take(2)
                parts = ["std"]
                continue
            if char == "S":
                parts = [self.substitution()]
                is_template = special = False
                continue
            if char == "I":
                if not parts:
                    raise DemangleError("template arguments without a name")
                parts[-1] += self.template_args_list()
                is_template = True
            elif char in "CD" and self.peek(1).isdigit():
                if not parts:
                    raise DemangleError("constructor outside a class")
                self.take(2)
                base = _simple_name("::".join(parts))
                parts.append(base if char == "C" else "~" + base)
                is_template = False
                special = True
            else:
                parts.append(self.unqualified())
                is_template = special = False
            if self.peek() != "E":
                self.subs.append("::".join(parts))
        self.expect("E")
        if not parts:
            raise DemangleError("empty nested name")
        return "::".join(parts), is_template, suffix, special

    def unqualified(self) -> str:
        if self.peek().isdigit():
            length = self.number()
            text = self.take(length)
            if text.startswith("_GLOBAL__N"):
                return "(anonymous namespace)"
            return text
        code = self.text[self.pos:self.pos + 2]
        if code in _OPERATORS:
            self.take(2)
            op = _OPERATORS[code]
            return "operator" + (" " + op if op[0].isalpha() else op)
        raise DemangleError(f"unknown name component at {self.pos}")

    def substitution(self) -> str:
        self.expect("S")
        char = self.peek()
        if char in _STANDARD_SUBS:
            self.take()
            return _STANDARD_SUBS[char]
        index = 0
        if char != "_":
            digits = ""
            while self.peek() and self.peek() != "_":
                digit = self.take()
                if not (digit.isdigit() or digit.isupper()):
                    raise DemangleError("bad substitution")
                digits += digit
            index = int(digits, 36) + 1
        self.expect("_")
        if index >= len(self.subs):
            raise DemangleError("substitution out of range")
        return self.subs[index]

    def template_param(self) -> str:
        self.expect("T")
        index = 0
        if self.peek() != "_":
            index = self.number() + 1
        self.expect("_")
        if index >= len(self.template_args):
            raise DemangleError("template parameter out of range")
        return self.template_args[index]

    def template_args_list(self) -> str:
        self.expect("I")
        args = []
        while self.peek() != "E":
            if not self.peek():
                raise DemangleError("unterminated template arguments")
            args.append(self.template_arg())
        self.expect("E")
        self.template_args = args
        text = "<" + ", ".join(args)
        return text + (" >" if text.endswith(">") else ">")

    def template_arg(self) -> str:
        if self.peek() != "L":
            return self.type()
        self.take()
        kind = self.take()
        negative = self.peek() == "n"
        if negative:
            self.take()
        value = self.number()
        self.expect("E")
        if negative:
            value = -value
        if kind == "b":
            return "true" if value else "false"
        if kind == "i":
            return str(value)
        if kind not in _BUILTINS:
            raise DemangleError("unsupported literal")
        return f"({_BUILTINS[kind]}){value}"

    def function_type(self, declarator: str) -> str:
        self.expect("F")
        if self.peek() == "Y":
            self.take()
        result = self.type()
        params = []
        while self.peek() != "E":
            if not self.peek():
                raise DemangleError("unterminated function type")
            params.append(self.type())
        self.expect("E")
        if params == ["void"]:
            params = []
        inner = f" ({declarator})" if declarator else " "
        return f"{result}{inner}({', '.join(params)})"

    def type(self) -> str:
        char = self.peek()
        if char in _BUILTINS:
            self.take()
            return _BUILTINS[char]
        if char == "D" and self.peek(1) in _D_BUILTINS:
            self.take()
            return _D_BUILTINS[self.take()]
        modifiers = {"P": "*", "R": "&", "O": "&&"}
        if char in modifiers:
            self.take()
            if self.peek() == "F":
                self.subs.append("")
                slot = len(self.subs) - 1
                text = self.function_type(modifiers[char])
                self.subs[slot] = text
            else:
                text = self.type() + modifiers[char]
            self.subs.append(text)
            return text
        qualifiers = {"K": " const", "V": " volatile", "r": " restrict"}
        if char in qualifiers:
            self.take()
            text = self.type() + qualifiers[char]
            self.subs.append(text)
            return text
        if char == "F":
            text = self.function_type("")
            self.subs.append(text)
            return text
        if char == "A":
            self.take()
            size = self.number()
            self.expect("_")
            text = f"{self.type()} [{size}]"
            self.subs.append(text)
            return text
        if char == "T":
            text = self.template_param()
            self.subs.append(text)
            if self.peek() == "I":
                text += self.template_args_list()
                self.subs.append(text)
            return text
        if char == "S" and self.peek(1) != "t":
            text = self.substitution()
            if self.peek() == "I":
                text += self.template_args_list()
                self.subs.append(text)
            return text
        if char == "N":
            text = self.nested()[0]
            self.subs.append(text)
            return text
        if char == "S" or char.isdigit():
            if char == "S":
                self.take(2)
                text = "std::" + self.unqualified()
            else:
                text = self.unqualified()
            if self.peek() == "I":
                self.subs.append(text)
                text += self.template_args_list()
            self.subs.append(text)
            return text
        raise DemangleError(f"unknown type at {self.pos}")


def demangle(name: str) -> str:
    """Turn a mangled ``_Z`` name into its C++ spelling."""
    if not name.startswith("_Z"):
        raise DemangleError(f"not a mangled name: {name!r}")
    body, dot, clone = name[2:].partition(".")
    parser = _Parser(body)
    try:
        result = parser.encoding()
    except (IndexError, ValueError) as exc:
        if isinstance(exc, DemangleError):
            raise
        raise DemangleError(str(exc)) from exc
    if not parser.at_end():
        raise DemangleError("trailing characters in mangled name")
    if dot:
        result += f" [clone .{clone}]"
    return result