"""
cmocka-runner-gen: cmocka test runners from annotated C sources.

Reads ``/*!cmocka ... */`` directive comments from C test sources, resolves
the groups, tests and fixtures they describe, and writes the C source of a
runner that executes them, plus a manifest for the build system.
"""

__version__ = "1.0.0"
