"""
Model builder: turns scanned directives into a resolved :class:`Registry`.

The build runs in two phases.

Collection walks every file's directives in physical order, tracking the
file's current default group. It records groups (merging fixture patches
into them), tests, and every name a directive refers to together with the
role the directive expects that name to play. Names that have not been
seen yet are fine at this point.

Resolution runs once all files are in. It binds each recorded reference
against the global symbol table, tightens the symbol's role, checks the
symbol's signature for that role and fills in the group-default fixtures
of every test. All problems are collected, none of them stops the build.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType

from .errors import (
    DirectiveSyntaxError,
    DuplicateName,
    OrphanDirective,
    RoleConflict,
    SignatureMismatch,
    UnknownSymbolReference,
)
from .parser import DirectiveKind, parse_directive
from .scanner import DEFAULT_MARKER

log = logging.getLogger("cmocka_runner")

DEFAULT_TIMEOUT = 10

STATE_PARAMS = ("void**",)


class Role(Enum):
    UNKNOWN = "unknown"
    TEST = "test"
    SETUP = "setup"
    TEARDOWN = "teardown"


def tighten(current, requested):
    """Merge ``requested`` into ``current`` on the role lattice.

    ``UNKNOWN`` tightens to any concrete role and asking for ``UNKNOWN``
    changes nothing. Two different concrete roles raise :class:`ValueError`.
    """
    if requested is Role.UNKNOWN or requested is current:
        return current
    if current is Role.UNKNOWN:
        return requested
    raise ValueError(f"{current.value} cannot become {requested.value}")


RETURN_KINDS = {
    Role.TEST: "void",
    Role.SETUP: "int",
    Role.TEARDOWN: "int",
}


def expected_signature(name, role):
    return f"{RETURN_KINDS[role]} {name}(void **state)"


def signature_matches(symbol, role):
    if role is Role.UNKNOWN:
        return True
    return symbol.return_kind == RETURN_KINDS[role] and symbol.params == STATE_PARAMS


def default_group_name(filename):
    """Group name for tests in ``filename`` before any group directive.

    The base name up to its first dot, made into a C identifier.
    """
    stem = os.path.basename(filename).split(".")[0]
    name = re.sub(r"[^A-Za-z0-9_]", "_", stem)
    if not name or name[0].isdigit():
        name = "_" + name
    return name


@dataclass(frozen=True)
class Symbol:
    name: str
    filename: str
    line: int
    return_kind: str
    params: tuple[str, ...]
    defined: bool = True
    static: bool = False
    role: Role = Role.UNKNOWN
    role_origin: tuple[str, int] | None = None

    @property
    def signature(self):
        params = ", ".join(self.params) if self.params else "void"
        storage = "static " if self.static else ""
        return f"{storage}{self.return_kind} {self.name}({params})"


@dataclass(frozen=True)
class Test:
    name: str
    group: str
    symbol: str
    setup: str | None = None
    teardown: str | None = None
    disabled: bool = False
    timeout: int = DEFAULT_TIMEOUT
    filename: str = ""
    line: int = 0


@dataclass(frozen=True)
class Group:
    name: str
    tests: tuple[Test, ...] = ()
    setup: str | None = None
    teardown: str | None = None
    filename: str = ""
    line: int = 0


@dataclass(frozen=True)
class Registry:
    groups: tuple[Group, ...] = ()
    symbols: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    errors: tuple = ()
    files: tuple[str, ...] = ()

    @property
    def ok(self):
        return not self.errors

    @property
    def tests(self):
        return [t for g in self.groups for t in g.tests]

    def group(self, name):
        for g in self.groups:
            if g.name == name:
                return g
        return None

    def test(self, name):
        for t in self.tests:
            if t.name == name:
                return t
        return None


@dataclass
class _GroupDraft:
    name: str
    filename: str
    line: int
    fixtures: dict = field(default_factory=dict)
    tests: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Reference:
    name: str
    role: Role
    context: str
    filename: str
    line: int


class ModelBuilder:
    """Stateful builder; feed files with :meth:`add_file`, then call :meth:`build`.

    Files must be added in the order they were given to the tool: the
    default group and fixture merges depend on it.
    """

    def __init__(self, *, marker=DEFAULT_MARKER, default_timeout=DEFAULT_TIMEOUT):
        self.marker = marker
        self.default_timeout = default_timeout
        self._files = []
        self._groups = {}
        self._tests = {}
        self._symbols = {}
        self._references = []
        self._errors = []

    # -- collection --

    def add_file(self, scan):
        self._files.append(scan.filename)
        for definition in scan.definitions:
            self._declare(definition)

        current = default_group_name(scan.filename)
        for raw, following in scan.sites:
            try:
                directive = parse_directive(raw, self.marker)
            except DirectiveSyntaxError as exc:
                self._errors.append(exc)
                continue

            if following is not None:
                self._declare(following)

            kind = directive.kind
            if kind is DirectiveKind.GROUP:
                self._define_group(directive)
                current = directive.name
            elif kind in (DirectiveKind.SETUP, DirectiveKind.TEARDOWN):
                self._declare_fixture(directive, following)
            elif (
                kind is DirectiveKind.TEST
                or directive.group
                or directive.attributes
                or (following is not None and signature_matches(following, Role.TEST))
            ):
                self._add_test(directive, following, current)
            elif following is None:
                self._orphan(directive)
            # Otherwise a bare declaration: the symbol is known, its role
            # is left to whoever refers to it.

    def _declare(self, decl):
        existing = self._symbols.get(decl.identifier)
        if existing is None:
            self._symbols[decl.identifier] = Symbol(
                name=decl.identifier,
                filename=decl.filename,
                line=decl.line,
                return_kind=decl.return_kind,
                params=decl.params,
                defined=decl.defined,
                static=decl.static,
            )
            return
        if (existing.filename, existing.line) == (decl.filename, decl.line):
            return
        if decl.static and not existing.static and decl.filename == existing.filename:
            # A static declaration anywhere in the file makes the function internal.
            existing = replace(existing, static=True)
            self._symbols[decl.identifier] = existing
        if decl.defined and not existing.defined:
            self._symbols[decl.identifier] = replace(
                existing,
                filename=decl.filename,
                line=decl.line,
                return_kind=decl.return_kind,
                params=decl.params,
                defined=True,
                static=decl.static or (existing.static and existing.filename == decl.filename),
            )
        elif decl.defined:
            log.warning(
                "%s:%d: '%s' is also defined at %s:%d, using the first definition",
                decl.filename,
                decl.line,
                decl.identifier,
                existing.filename,
                existing.line,
            )

    def _group(self, name, directive):
        group = self._groups.get(name)
        if group is None:
            group = _GroupDraft(name=name, filename=directive.filename, line=directive.line)
            self._groups[name] = group
        return group

    def _reference(self, name, role, directive, context):
        self._references.append(
            _Reference(
                name=name,
                role=role,
                context=context,
                filename=directive.filename,
                line=directive.line,
            )
        )

    def _orphan(self, directive):
        self._errors.append(
            OrphanDirective(
                "directive has no associated declaration and no explicit name",
                directive.filename,
                directive.line,
            )
        )

    def _target_name(self, directive, following):
        # An explicit name wins; a following declaration with another
        # identifier is not what the directive is about.
        if directive.name is not None:
            return directive.name
        if following is not None:
            return following.identifier
        self._orphan(directive)
        return None

    def _define_group(self, directive):
        group = self._group(directive.name, directive)
        patch = {
            slot: directive.attributes[slot]
            for slot in ("setup", "teardown")
            if slot in directive.attributes
        }
        group.fixtures.update(patch)
        for slot, fixture in patch.items():
            self._reference(fixture, Role(slot), directive, f"{slot} of group '{group.name}'")

    def _declare_fixture(self, directive, following):
        name = self._target_name(directive, following)
        if name is None:
            return
        role = Role.SETUP if directive.kind is DirectiveKind.SETUP else Role.TEARDOWN
        self._reference(name, role, directive, f"{role.value} fixture")

    def _add_test(self, directive, following, current_group):
        name = self._target_name(directive, following)
        if name is None:
            return
        previous = self._tests.get(name)
        if previous is not None:
            self._errors.append(
                DuplicateName(
                    f"test '{name}' is already defined at {previous.filename}:{previous.line}",
                    directive.filename,
                    directive.line,
                )
            )
            return

        test = Test(
            name=name,
            group=directive.group or current_group,
            symbol=name,
            setup=directive.setup,
            teardown=directive.teardown,
            disabled=bool(directive.disabled),
            timeout=directive.timeout or self.default_timeout,
            filename=directive.filename,
            line=directive.line,
        )
        self._tests[name] = test
        self._group(test.group, directive).tests.append(name)

        self._reference(name, Role.TEST, directive, "test")
        if test.setup:
            self._reference(test.setup, Role.SETUP, directive, f"setup of test '{name}'")
        if test.teardown:
            self._reference(test.teardown, Role.TEARDOWN, directive, f"teardown of test '{name}'")

    # -- resolution --

    def build(self):
        symbols = dict(self._symbols)
        errors = list(self._errors)
        checked = set()

        for ref in self._references:
            symbol = symbols.get(ref.name)
            if symbol is None:
                errors.append(
                    UnknownSymbolReference(
                        f"{ref.context} refers to '{ref.name}', "
                        "which is not declared in any input file",
                        ref.filename,
                        ref.line,
                    )
                )
                continue

            try:
                role = tighten(symbol.role, ref.role)
            except ValueError:
                origin = "{}:{}".format(*symbol.role_origin)
                errors.append(
                    RoleConflict(
                        f"'{ref.name}' is used as {ref.role.value} here "
                        f"but already as {symbol.role.value} at {origin}",
                        ref.filename,
                        ref.line,
                    )
                )
                continue
            if role is not symbol.role:
                symbol = replace(symbol, role=role, role_origin=(ref.filename, ref.line))
                symbols[ref.name] = symbol

            if (ref.name, ref.role) in checked:
                continue
            checked.add((ref.name, ref.role))
            if symbol.static:
                errors.append(
                    SignatureMismatch(
                        f"'{ref.name}' is used as {ref.role.value} but is static; "
                        "static functions cannot be referenced from the runner",
                        symbol.filename,
                        symbol.line,
                    )
                )
            elif not signature_matches(symbol, ref.role):
                errors.append(
                    SignatureMismatch(
                        f"'{ref.name}' is used as {ref.role.value} and must look like "
                        f"'{expected_signature(ref.name, ref.role)}', "
                        f"found '{symbol.signature}'",
                        symbol.filename,
                        symbol.line,
                    )
                )

        groups = []
        for draft in self._groups.values():
            setup = draft.fixtures.get("setup")
            teardown = draft.fixtures.get("teardown")
            tests = tuple(
                replace(
                    self._tests[name],
                    setup=self._tests[name].setup or setup,
                    teardown=self._tests[name].teardown or teardown,
                )
                for name in draft.tests
            )
            groups.append(
                Group(
                    name=draft.name,
                    tests=tests,
                    setup=setup,
                    teardown=teardown,
                    filename=draft.filename,
                    line=draft.line,
                )
            )

        registry = Registry(
            groups=tuple(groups),
            symbols=MappingProxyType(symbols),
            errors=tuple(errors),
            files=tuple(self._files),
        )
        log.info(
            "resolved %d group(s), %d test(s) from %d file(s), %d error(s)",
            len(registry.groups),
            len(registry.tests),
            len(registry.files),
            len(registry.errors),
        )
        return registry


def build_registry(scans, *, marker=DEFAULT_MARKER, default_timeout=DEFAULT_TIMEOUT):
    """Build a :class:`Registry` from scan results, in the order given."""
    builder = ModelBuilder(marker=marker, default_timeout=default_timeout)
    for scan in scans:
        builder.add_file(scan)
    return builder.build()
