"""
Error kinds reported by the runner generator.

Every error carries the file and line of the directive (or declaration)
it is about. Errors are collected across the whole run and reported
together; none of them aborts the scan of the remaining files.
"""

from __future__ import annotations


class GeneratorError(Exception):
    kind = "GeneratorError"

    def __init__(self, message, filename="", line=0):
        super().__init__(message)
        self.message = message
        self.filename = filename
        self.line = line

    def __str__(self):
        where = self.filename or "<unknown>"
        if self.line:
            where = f"{where}:{self.line}"
        return f"{where}: {self.kind}: {self.message}"


class DirectiveSyntaxError(GeneratorError):
    """Malformed directive text (unknown key, bad value, misplaced attribute)."""

    kind = "DirectiveSyntaxError"


class UnknownSymbolReference(GeneratorError):
    """An explicit name that no input file defines."""

    kind = "UnknownSymbolReference"


class SignatureMismatch(GeneratorError):
    """A symbol used as test or fixture does not have the required shape."""

    kind = "SignatureMismatch"


class RoleConflict(GeneratorError):
    kind = "RoleConflict"


class DuplicateName(GeneratorError):
    kind = "DuplicateName"


class OrphanDirective(GeneratorError):
    """A directive with neither a following declaration nor an explicit name."""

    kind = "OrphanDirective"


class GenerationError(Exception):
    """Raised when code generation is attempted with outstanding errors."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} error(s) prevent runner generation")
