"""
Generator configuration.

Uses the mkdocs config schema machinery, so a configuration file reads like
any ``mkdocs.yml`` section::

    marker: cmocka
    default_timeout: 10
    manifest_format: json
    jobs: 4
    includes:
      - project_test_helpers.h
"""

from __future__ import annotations

import logging
import re

from mkdocs.config import config_options
from mkdocs.config.base import Config, ValidationError
from mkdocs.exceptions import ConfigurationError

from .parser import MAX_TIMEOUT

log = logging.getLogger("cmocka_runner")

_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")


class PositiveInt(config_options.Type):
    def __init__(self, default=None, maximum=None):
        super().__init__(int, default=default)
        self.maximum = maximum

    def run_validation(self, value):
        value = super().run_validation(value)
        if isinstance(value, bool) or value <= 0:
            raise ValidationError(f"Expected a positive integer, got {value!r}")
        if self.maximum is not None and value > self.maximum:
            raise ValidationError(f"Expected at most {self.maximum}, got {value!r}")
        return value


class Identifier(config_options.Type):
    def __init__(self, default=None):
        super().__init__(str, default=default)

    def run_validation(self, value):
        value = super().run_validation(value)
        if not _IDENT_RE.match(value):
            raise ValidationError(f"'{value}' is not a valid identifier")
        return value


class GeneratorConfig(Config):
    marker = Identifier(default="cmocka")
    default_timeout = PositiveInt(default=10, maximum=MAX_TIMEOUT)
    manifest_format = config_options.Choice(("json", "text"), default="json")
    jobs = PositiveInt(default=1)
    includes = config_options.Type(list, default=[])


def load_config(config_file=None, **overrides):
    """Load and validate the configuration.

    ``config_file`` is an open YAML file or a path; keyword overrides whose
    value is ``None`` are ignored, so unset command-line options fall back
    to the file or the defaults.
    """
    cfg = GeneratorConfig()
    if config_file is not None:
        if isinstance(config_file, str):
            with open(config_file, "rb") as fd:
                cfg.load_file(fd)
        else:
            cfg.load_file(config_file)
    cfg.load_dict({k: v for k, v in overrides.items() if v is not None})

    errors, warnings = cfg.validate()
    for key, warning in warnings:
        log.warning("config option '%s': %s", key, warning)
    if errors:
        msg = "; ".join(f"'{key}': {err}" for key, err in errors)
        raise ConfigurationError(f"invalid generator configuration: {msg}")
    return cfg
