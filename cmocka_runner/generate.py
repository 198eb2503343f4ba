#!/usr/bin/env python3
"""
Generate a cmocka test runner from annotated C sources.

Usage:
    cmocka-runner-gen tests/foo.c tests/bar.c -o runner.c -m runner.json
    python -m cmocka_runner tests/*.c --timeout 30 --jobs 4 -o runner.c
    cmocka-runner-gen -c runner.yml tests/foo.c --manifest-format text -m runner.txt
"""

import argparse
import contextlib
import logging
import os
import sys

from mkdocs.exceptions import ConfigurationError

from .config import load_config
from .model import build_registry
from .renderer import RenderConfig, render_manifest, render_runner
from .scanner import scan_files

log = logging.getLogger("cmocka_runner")


def generate(sources, cfg, runner_path=None):
    """Run the whole pipeline; returns ``(registry, runner, manifest)``.

    ``runner`` and ``manifest`` are ``None`` when the registry has errors.
    """
    scans = scan_files(sources, marker=cfg["marker"], jobs=cfg["jobs"])
    log.info(
        "scanned %d file(s), %d directive(s)",
        len(scans),
        sum(len(s.sites) for s in scans),
    )
    registry = build_registry(
        scans, marker=cfg["marker"], default_timeout=cfg["default_timeout"]
    )
    if registry.errors:
        return registry, None, None

    rcfg = RenderConfig.from_config(cfg)
    runner = render_runner(registry, rcfg)
    manifest = render_manifest(registry, rcfg.manifest_format, runner=runner_path)
    return registry, runner, manifest


def _write_all(outputs):
    """Write every ``(path, text)`` pair, or none of them.

    Each text goes to a temporary file beside its target first; targets are
    only replaced once all of them have been written.
    """
    staged = []
    try:
        for path, text in outputs:
            tmp = f"{path}.tmp"
            with open(tmp, "w", encoding="utf-8", newline="\n") as f:
                staged.append(tmp)
                f.write(text)
    except OSError:
        for tmp in staged:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
        raise
    for (path, _), tmp in zip(outputs, staged):
        os.replace(tmp, path)
        log.info("wrote %s", path)


def main(argv=None):
    p = argparse.ArgumentParser(
        prog="cmocka-runner-gen",
        description="Generate a cmocka test runner from /*!cmocka */ annotated sources",
    )
    p.add_argument("sources", nargs="+", help="Annotated C source files, in order")
    p.add_argument("-o", "--output", help="Runner source to write (default: stdout)")
    p.add_argument("-m", "--manifest", help="Manifest file to write")
    p.add_argument("-c", "--config", help="YAML configuration file")
    p.add_argument("--marker", help="Directive marker (default: cmocka)")
    p.add_argument("--timeout", type=int, help="Default test timeout in seconds (default: 10)")
    p.add_argument("--jobs", type=int, help="Parallel scanner workers (default: 1)")
    p.add_argument("--manifest-format", choices=("json", "text"), help="Manifest format")
    p.add_argument(
        "--include",
        action="append",
        help="Extra header to include in the runner (repeatable)",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More output")
    args = p.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        cfg = load_config(
            args.config,
            marker=args.marker,
            default_timeout=args.timeout,
            jobs=args.jobs,
            manifest_format=args.manifest_format,
            includes=args.include,
        )
    except (ConfigurationError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    try:
        registry, runner, manifest = generate(args.sources, cfg, runner_path=args.output)
    except OSError as exc:
        log.error("cannot read sources: %s", exc)
        return 1

    if registry.errors:
        for err in registry.errors:
            log.error("%s", err)
        log.error("%d error(s), no runner generated", len(registry.errors))
        return 1

    outputs = []
    if args.output:
        outputs.append((args.output, runner))
    if args.manifest:
        outputs.append((args.manifest, manifest))
    try:
        _write_all(outputs)
    except OSError as exc:
        log.error("cannot write output: %s", exc)
        return 1

    if not args.output:
        sys.stdout.write(runner)
    return 0


if __name__ == "__main__":
    sys.exit(main())
