"""
Decoder for rustdoc implementor fragments.

rustdoc writes one script per (library, trait) under
``implementors/<crate path>/trait.<Name>.js``::

    (function() {var implementors = {};
    implementors["haybale"] = [{text:"impl ...",synthetic:true,types:["haybale::project::Project"]},];

                if (window.register_implementors) {
                    window.register_implementors(implementors);
                } else {
                    window.pending_implementors = implementors;
                }
            })()

The array literals are almost JSON: object keys are bare identifiers and the
last element carries a trailing comma. :func:`parse_fragment` pulls out every
``implementors["<lib>"] = [...]`` assignment and rewrites just those two
differences, leaving string contents (escaped HTML) untouched.
"""

from __future__ import annotations

import json
import re
from pathlib import PurePath
from typing import Any

from implspine.core.errors import FragmentParseError

__all__ = ["parse_fragment", "parse_payload_text", "marker_from_path"]

_ASSIGNMENT = re.compile(r'implementors\[\s*"((?:[^"\\]|\\.)*)"\s*\]\s*=\s*(?=\[)')
_JSON_LITERALS = frozenset({"true", "false", "null"})


def parse_fragment(text: str, *, source_locator: str | None = None) -> dict[str, list[Any]]:
    """Decode a rustdoc fragment script into ``{library: [record, ...]}``.

    Raises:
        FragmentParseError: No assignment found, or an array does not decode.
    """
    payload: dict[str, list[Any]] = {}
    pos = 0
    while match := _ASSIGNMENT.search(text, pos):
        library = json.loads(f'"{match.group(1)}"')
        array_text, pos = _literal_to_json(text, match.end(), source_locator)
        try:
            records = json.loads(array_text)
        except json.JSONDecodeError as e:
            raise FragmentParseError(
                f"Implementors for {library!r} are not a valid array literal: {e.msg}",
                cause=e,
            ).with_context(source_id=library, source_locator=source_locator) from e
        payload[library] = records

    if not payload:
        raise FragmentParseError("No implementors assignment found").with_context(
            source_locator=source_locator
        )
    return payload


def parse_payload_text(text: str, *, source_locator: str | None = None) -> dict[str, Any]:
    """Decode either a rustdoc fragment script or a plain JSON payload."""
    if text.lstrip().startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise FragmentParseError(f"Invalid JSON payload: {e.msg}", cause=e).with_context(
                source_locator=source_locator
            ) from e
        if not isinstance(payload, dict):
            raise FragmentParseError("JSON payload must be an object").with_context(
                source_locator=source_locator
            )
        return payload
    return parse_fragment(text, source_locator=source_locator)


def marker_from_path(path: str | PurePath) -> str | None:
    """Derive the marker path from a fragment location.

    >>> marker_from_path("doc/implementors/core/marker/trait.Unpin.js")
    'core::marker::Unpin'
    >>> marker_from_path("trait.Send.js")
    'Send'
    """
    parts = PurePath(path).parts
    if not parts:
        return None
    filename = parts[-1]
    if not filename.endswith(".js"):
        return None
    kind, _, name = filename[: -len(".js")].partition(".")
    if kind != "trait" or not name:
        return None

    if "implementors" in parts:
        start = len(parts) - 1 - parts[::-1].index("implementors")
        module = list(parts[start + 1 : -1])
    else:
        module = []
    return "::".join([*module, name])


def _literal_to_json(text: str, start: int, source_locator: str | None) -> tuple[str, int]:
    """Convert the JS array literal starting at ``text[start]`` into JSON.

    Returns the JSON text and the index just past the closing bracket.
    """
    out: list[str] = []
    depth = 0
    in_string = False
    i = start
    n = len(text)

    while i < n:
        ch = text[i]

        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
        elif ch in "[{":
            depth += 1
            out.append(ch)
        elif ch in "]}":
            # trailing comma
            while out and out[-1].isspace():
                out.pop()
            if out and out[-1] == ",":
                out.pop()
            depth -= 1
            out.append(ch)
            if depth == 0:
                return "".join(out), i + 1
        elif ch.isalpha() or ch in "_$":
            j = i
            while j < n and (text[j].isalnum() or text[j] in "_$"):
                j += 1
            ident = text[i:j]
            k = j
            while k < n and text[k].isspace():
                k += 1
            if k < n and text[k] == ":" and ident not in _JSON_LITERALS:
                out.append(json.dumps(ident))
            else:
                out.append(ident)
            i = j
            continue
        else:
            out.append(ch)
        i += 1

    raise FragmentParseError("Unterminated implementors array").with_context(
        source_locator=source_locator
    )
