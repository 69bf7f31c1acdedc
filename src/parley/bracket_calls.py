"""Parse free-text tool calls emitted by models without native tool calling.

Llama-family models served through OpenRouter often answer with a trailing
bracket list instead of structured tool calls::

    I'll look around first.
    [list_files(path="src"), read_file(path="README.md", limit=40)]

``parse_llama_tool_calls`` recovers those calls. Values keep their literal
text with surrounding quotes removed; the caller decides how to type them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re

__all__ = ["ParsedCall", "parse_llama_tool_calls"]

logger = logging.getLogger(__name__)

_CALL_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_.\-]*)\s*\((.*)\)$", re.DOTALL)
_QUOTES = ("'", '"')
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


@dataclass(frozen=True)
class ParsedCall:
    """A tool call recovered from free text."""

    name: str
    args: dict[str, str] = field(default_factory=dict)


class _Malformed(ValueError):
    pass


def _find_trailing_block(text: str) -> str | None:
    """Return the body of the ``[...]`` block that ends *text*, if any."""
    stripped = text.rstrip()
    if not stripped.endswith("]"):
        return None

    depth = 0
    quote: str | None = None
    # Walk backwards so the match is anchored at the final bracket.
    for i in range(len(stripped) - 1, -1, -1):
        ch = stripped[i]
        if quote is not None:
            if ch == quote and (i == 0 or stripped[i - 1] != "\\"):
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "]":
            depth += 1
        elif ch == "[":
            depth -= 1
            if depth == 0:
                return stripped[i + 1 : -1]
    return None


def _split_top_level(body: str, sep: str = ",", *, strict: bool = True) -> list[str]:
    """Split *body* on *sep* outside quotes and nested brackets.

    In lenient mode stray closers are ignored and unterminated nesting is
    left inside the final piece, so one broken call cannot hide the others.
    """
    parts: list[str] = []
    stack: list[str] = []
    quote: str | None = None
    current: list[str] = []
    escaped = False

    for ch in body:
        if quote is not None:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if stack and stack[-1] == _CLOSERS[ch]:
                stack.pop()
            elif strict:
                raise _Malformed(f"unbalanced {ch!r}")
        elif ch == sep and not stack:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)

    if strict and quote is not None:
        raise _Malformed("unterminated string")
    if strict and stack:
        raise _Malformed(f"unclosed {stack[-1]!r}")
    parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        inner = value[1:-1]
        return inner.replace("\\" + value[0], value[0])
    return value


def _parse_call(raw: str) -> ParsedCall:
    match = _CALL_RE.match(raw.strip())
    if match is None:
        raise _Malformed("not of the form name(...)")
    name, arg_body = match.group(1), match.group(2)

    # Surfaces unbalanced nesting inside the argument list.
    pieces = _split_top_level(arg_body)
    args: dict[str, str] = {}
    if len(pieces) == 1 and not pieces[0].strip():
        return ParsedCall(name=name, args=args)

    for piece in pieces:
        key, eq, value = piece.partition("=")
        key = key.strip()
        if not eq or not key.isidentifier():
            raise _Malformed(f"argument without name=value: {piece.strip()!r}")
        args[key] = _unquote(value)
    return ParsedCall(name=name, args=args)


def parse_llama_tool_calls(text: str) -> list[ParsedCall]:
    """Extract tool calls from the trailing ``[name(arg=value), ...]`` block.

    Malformed calls are skipped; the rest of the block is still returned.
    Text without a trailing bracket block yields an empty list.
    """
    if not text:
        return []
    body = _find_trailing_block(text)
    if body is None or not body.strip():
        return []

    calls: list[ParsedCall] = []
    for raw in _split_top_level(body, strict=False):
        if not raw.strip():
            continue
        try:
            calls.append(_parse_call(raw))
        except _Malformed as e:
            logger.warning("Skipping malformed tool call %r: %s", raw.strip()[:80], e)
    return calls
