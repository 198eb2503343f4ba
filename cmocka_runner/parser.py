"""
Directive parser.

Turns the text of one directive comment into a :class:`Directive`::

    /*!cmocka [kind] [name] [key:value | flag ...] */

``kind`` is one of ``group``, ``test``, ``setup`` or ``teardown``. Recognised
keys are ``group``, ``setup``, ``teardown``, ``disabled`` and ``timeout``;
``disabled`` may also be given as a bare flag. Anything else is a
:class:`~cmocka_runner.errors.DirectiveSyntaxError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from .errors import DirectiveSyntaxError
from .scanner import DEFAULT_MARKER

_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")
_TIMEOUT_RE = re.compile(r"^[0-9]+$")

# alarm() takes an unsigned int
MAX_TIMEOUT = 4294967295


class DirectiveKind(Enum):
    GROUP = "group"
    TEST = "test"
    SETUP = "setup"
    TEARDOWN = "teardown"
    BARE = "bare"


_KIND_WORDS = {
    "group": DirectiveKind.GROUP,
    "test": DirectiveKind.TEST,
    "setup": DirectiveKind.SETUP,
    "teardown": DirectiveKind.TEARDOWN,
}

_KNOWN_KEYS = ("group", "setup", "teardown", "disabled", "timeout")

_ALLOWED_KEYS = {
    DirectiveKind.GROUP: frozenset({"setup", "teardown"}),
    DirectiveKind.TEST: frozenset(_KNOWN_KEYS),
    DirectiveKind.BARE: frozenset(_KNOWN_KEYS),
    DirectiveKind.SETUP: frozenset(),
    DirectiveKind.TEARDOWN: frozenset(),
}

_FLAGS = {"disabled": True}


@dataclass(frozen=True)
class Directive:
    kind: DirectiveKind
    name: str | None = None
    group: str | None = None
    attributes: dict = field(default_factory=dict)
    filename: str = ""
    line: int = 0

    @property
    def setup(self):
        return self.attributes.get("setup")

    @property
    def teardown(self):
        return self.attributes.get("teardown")

    @property
    def disabled(self):
        return self.attributes.get("disabled")

    @property
    def timeout(self):
        return self.attributes.get("timeout")


def directive_body(text, marker=DEFAULT_MARKER):
    """Strip the comment delimiters, the marker and continuation asterisks."""
    prefix = f"/*!{marker}"
    if text.startswith(prefix):
        text = text[len(prefix) :]
    if text.endswith("*/"):
        text = text[:-2]
    lines = []
    for line in text.split("\n"):
        s = line.strip()
        if s.startswith("*"):
            s = s[1:]
        lines.append(s)
    return " ".join(lines).strip()


def _convert_value(key, value, error):
    if not value:
        raise error(f"attribute '{key}' needs a value")
    if key in ("group", "setup", "teardown"):
        if not _IDENT_RE.match(value):
            raise error(f"'{value}' is not a valid {key} name")
        return value
    if key == "disabled":
        lowered = value.lower()
        if lowered not in ("true", "false"):
            raise error(f"disabled expects true or false, got '{value}'")
        return lowered == "true"
    if not _TIMEOUT_RE.match(value) or int(value) <= 0:
        raise error(f"timeout expects a positive number of seconds, got '{value}'")
    if int(value) > MAX_TIMEOUT:
        raise error(f"timeout {value} is larger than {MAX_TIMEOUT} seconds")
    return int(value)


def parse_directive(raw, marker=DEFAULT_MARKER):
    """Parse a :class:`~cmocka_runner.scanner.RawComment` into a :class:`Directive`."""

    def error(message):
        return DirectiveSyntaxError(message, raw.filename, raw.start_line)

    tokens = directive_body(raw.text, marker).split()

    kind = DirectiveKind.BARE
    if tokens and tokens[0] in _KIND_WORDS:
        kind = _KIND_WORDS[tokens.pop(0)]

    name = None
    if tokens and ":" not in tokens[0] and tokens[0] not in _FLAGS:
        name = tokens.pop(0)
        if not _IDENT_RE.match(name):
            raise error(f"'{name}' is not a valid identifier")
        if kind is DirectiveKind.BARE:
            kind = DirectiveKind.TEST

    if kind is DirectiveKind.GROUP and name is None:
        raise error("group directive needs a group name")

    attributes = {}
    for token in tokens:
        if ":" in token:
            key, _, value = token.partition(":")
        elif token in _FLAGS:
            key, value = token, None
        else:
            raise error(f"unexpected token '{token}'")

        if key not in _KNOWN_KEYS:
            raise error(f"unknown attribute '{key}'")
        if key not in _ALLOWED_KEYS[kind]:
            raise error(f"attribute '{key}' is not allowed on a {kind.value} directive")
        if key in attributes:
            raise error(f"attribute '{key}' given more than once")
        if value is None:
            attributes[key] = _FLAGS[key]
        else:
            attributes[key] = _convert_value(key, value, error)

    group = attributes.pop("group", None)
    return Directive(
        kind=kind,
        name=name,
        group=group,
        attributes=attributes,
        filename=raw.filename,
        line=raw.start_line,
    )
