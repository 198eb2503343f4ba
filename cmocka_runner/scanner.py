"""
Source scanner for directive comments.

Finds ``/*!<marker> ... */`` comments in C sources and pairs each one with
the function declaration that physically follows it. Every file-scope
function definition is recorded as well, so that directives naming a
function explicitly can be resolved against unannotated code.

There is no preprocessing and no real C grammar here: declarations are
recognised by their textual shape on a "skeleton" of the source in which
comments, string/char literals and preprocessor lines are blanked out.
"""

from __future__ import annotations

import bisect
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

log = logging.getLogger("cmocka_runner")

DEFAULT_MARKER = "cmocka"

_TOKEN_RE = re.compile(
    r"/\*.*?(?:\*/|\Z)"
    r"|//[^\n]*"
    r'|"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'"
    r"|^[ \t]*\#(?:\\\n|[^\n])*",
    re.DOTALL | re.MULTILINE,
)
_NOT_NEWLINE_RE = re.compile(r"[^\n]")
_WS_RE = re.compile(r"\s*")
_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")

# Head (return kind + name), a flat parameter list, then a body or a ';'
_DECL_RE = re.compile(
    r"(?P<head>[A-Za-z_][\w \t\n*]*?)\(\s*(?P<params>[^(){};]*?)\s*\)\s*(?P<end>[{;])"
)

_STORAGE_WORDS = frozenset({"static", "inline", "extern", "__inline", "__inline__"})
_STATEMENT_WORDS = frozenset(
    {"return", "if", "else", "while", "for", "do", "switch", "case", "goto", "sizeof", "typedef"}
)
_TYPE_WORDS = frozenset(
    {
        "void", "char", "short", "int", "long", "float", "double", "signed",
        "unsigned", "_Bool", "bool", "const", "volatile", "restrict",
    }
)
_TAG_WORDS = frozenset({"struct", "union", "enum"})


@dataclass(frozen=True)
class RawComment:
    filename: str
    start_line: int
    end_line: int
    text: str


@dataclass(frozen=True)
class FollowingSymbol:
    identifier: str
    params: tuple[str, ...]
    return_kind: str
    filename: str = ""
    line: int = 0
    defined: bool = True
    static: bool = False

    @property
    def signature(self):
        params = ", ".join(self.params) if self.params else "void"
        return f"{self.return_kind} {self.identifier}({params})"


@dataclass
class ScanResult:
    filename: str
    sites: list[tuple[RawComment, FollowingSymbol | None]] = field(default_factory=list)
    definitions: list[FollowingSymbol] = field(default_factory=list)


def _canonical_type(tokens):
    return re.sub(r" ?\* ?", "*", " ".join(tokens))


def _split_type(text):
    return text.replace("*", " * ").split()


def _param_shape(param):
    tokens = _split_type(param)
    if not tokens:
        return ""
    if tokens == ["..."]:
        return "..."
    last = tokens[-1]
    if (
        len(tokens) > 1
        and _IDENT_RE.match(last)
        and last not in _TYPE_WORDS
        and tokens[-2] not in _TAG_WORDS
    ):
        tokens = tokens[:-1]
    return _canonical_type(tokens)


def _symbol_from_match(m, filename, line_of):
    tokens = _split_type(m.group("head"))
    if len(tokens) < 2:
        return None
    name = tokens[-1]
    if not _IDENT_RE.match(name) or name in _TYPE_WORDS or name in _STATEMENT_WORDS:
        return None
    rtokens = [t for t in tokens[:-1] if t not in _STORAGE_WORDS]
    if not rtokens or any(t in _STATEMENT_WORDS for t in rtokens):
        return None

    raw_params = m.group("params").strip()
    if raw_params in ("", "void"):
        params = ()
    else:
        params = tuple(_param_shape(p) for p in raw_params.split(","))

    return FollowingSymbol(
        identifier=name,
        params=params,
        return_kind=_canonical_type(rtokens),
        filename=filename,
        line=line_of(m.start()),
        defined=m.group("end") == "{",
        static="static" in tokens[:-1],
    )


def _skeleton(source):
    """Blank comments, literals and preprocessor lines, keeping offsets and newlines.

    Returns the skeleton and the (start, end) offsets of every block comment.
    """
    parts = []
    comments = []
    last = 0
    for m in _TOKEN_RE.finditer(source):
        token = m.group(0)
        parts.append(source[last : m.start()])
        parts.append(_NOT_NEWLINE_RE.sub(" ", token))
        if token.startswith("/*"):
            comments.append((m.start(), m.end()))
        last = m.end()
    parts.append(source[last:])
    return "".join(parts), comments


def _line_locator(source):
    newlines = [i for i, ch in enumerate(source) if ch == "\n"]

    def line_of(offset):
        return bisect.bisect_left(newlines, offset) + 1

    return line_of


def _file_scope_definitions(skeleton, filename, line_of):
    defs = []
    depth = 0
    pos = 0
    for m in _DECL_RE.finditer(skeleton):
        depth += skeleton.count("{", pos, m.start()) - skeleton.count("}", pos, m.start())
        pos = m.start()
        if depth != 0 or m.group("end") != "{":
            continue
        sym = _symbol_from_match(m, filename, line_of)
        if sym:
            defs.append(sym)
    return defs


def directive_pattern(marker=DEFAULT_MARKER):
    return re.compile(r"/\*!" + re.escape(marker) + r"(?=\s|\*/)")


def scan_source(source, filename, marker=DEFAULT_MARKER):
    skeleton, comments = _skeleton(source)
    line_of = _line_locator(source)
    is_directive = directive_pattern(marker)

    result = ScanResult(filename=filename)
    for start, end in comments:
        text = source[start:end]
        if not is_directive.match(text):
            continue
        raw = RawComment(
            filename=filename,
            start_line=line_of(start),
            end_line=line_of(end - 1),
            text=text,
        )
        # Comments are blank in the skeleton, so this also skips past
        # any other comment (directive or not) between here and the code.
        p = _WS_RE.match(skeleton, end).end()
        m = _DECL_RE.match(skeleton, p)
        following = _symbol_from_match(m, filename, line_of) if m else None
        result.sites.append((raw, following))

    result.definitions = _file_scope_definitions(skeleton, filename, line_of)
    return result


def scan_file(path, marker=DEFAULT_MARKER):
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        source = f.read()
    result = scan_source(source, path, marker)
    log.debug(
        "scanned %s: %d directive(s), %d definition(s)",
        path,
        len(result.sites),
        len(result.definitions),
    )
    return result


def scan_files(paths, marker=DEFAULT_MARKER, jobs=1):
    """Scan ``paths``, returning results in the order the paths were given."""
    paths = list(paths)
    if jobs <= 1 or len(paths) <= 1:
        return [scan_file(p, marker) for p in paths]
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        return list(pool.map(lambda p: scan_file(p, marker), paths))
