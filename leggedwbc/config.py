"""Reading task settings stored in the INFO property-tree format.

A parsed tree is a nested ``dict``: a leaf key maps to its value string, a key
followed by a braced block maps to a ``dict`` of its children.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

InfoTree = dict

_OPEN = "open"
_CLOSE = "close"
_WORD = "word"

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", '"': '"', "\\": "\\", "'": "'"}


def _tokenize(line: str, lineno: int) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    i = 0
    length = len(line)
    while i < length:
        ch = line[i]
        if ch.isspace():
            i += 1
        elif ch == ";":
            break
        elif ch == "{":
            tokens.append((_OPEN, ch))
            i += 1
        elif ch == "}":
            tokens.append((_CLOSE, ch))
            i += 1
        elif ch == '"':
            i += 1
            chars: list[str] = []
            while True:
                if i >= length:
                    raise ValueError(f"line {lineno}: unterminated string")
                ch = line[i]
                if ch == '"':
                    i += 1
                    break
                if ch == "\\" and i + 1 < length:
                    chars.append(_ESCAPES.get(line[i + 1], line[i + 1]))
                    i += 2
                    continue
                chars.append(ch)
                i += 1
            tokens.append((_WORD, "".join(chars)))
        else:
            start = i
            while i < length and not line[i].isspace() and line[i] not in '{};"':
                i += 1
            tokens.append((_WORD, line[start:i]))
    return tokens


def parse_info(text: str) -> InfoTree:
    """Parse INFO-format text into a nested dictionary."""
    root: InfoTree = {}
    stack: list[InfoTree] = [root]
    last_key: str | None = None

    for lineno, line in enumerate(text.splitlines(), start=1):
        if line.lstrip().startswith("#include"):
            continue
        tokens = _tokenize(line, lineno)
        pending_key: str | None = None
        value_seen = False
        for kind, token in tokens:
            if kind == _OPEN:
                if last_key is None:
                    raise ValueError(f"line {lineno}: '{{' without a key")
                node = stack[-1]
                child = node.get(last_key)
                if not isinstance(child, dict):
                    child = {}
                    node[last_key] = child
                stack.append(child)
                last_key = None
                pending_key = None
                value_seen = False
            elif kind == _CLOSE:
                if len(stack) == 1:
                    raise ValueError(f"line {lineno}: unmatched '}}'")
                stack.pop()
                last_key = None
                pending_key = None
                value_seen = False
            elif pending_key is None and not value_seen:
                stack[-1][token] = ""
                pending_key = token
                last_key = token
            elif pending_key is not None:
                stack[-1][pending_key] = token
                pending_key = None
                value_seen = True
            else:
                raise ValueError(f"line {lineno}: unexpected token {token!r}")

    if len(stack) > 1:
        raise ValueError("unclosed '{' at end of input")
    return root


def load_info_file(path: Union[str, Path]) -> InfoTree:
    """Read and parse an INFO-format file."""
    return parse_info(Path(path).read_text(encoding="utf-8"))


def get_value(tree: InfoTree, key: str):
    """Return the entry at a dotted key path; raise KeyError if it is absent."""
    node = tree
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_vector(tree: InfoTree, key: str, size: int) -> np.ndarray:
    """Load a column vector stored as ``(i,0)`` entries with an optional ``scaling``.

    Entries that are not given are zero.
    """
    node = get_value(tree, key)
    if not isinstance(node, dict):
        raise ValueError(f"{key} is not a block of matrix entries")
    scaling = float(node.get("scaling", 1.0))
    values = np.array([float(node.get(f"({i},0)", 0.0)) for i in range(size)], dtype=float)
    return scaling * values