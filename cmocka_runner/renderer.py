"""
Runner generator.

Takes a resolved :class:`~cmocka_runner.model.Registry` and turns it into
the C source of a cmocka test runner, plus a manifest of the symbols the
runner links against. Output depends only on the registry contents:
files in input order, groups in first-seen order, tests in first-seen
order within their group.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from .errors import GenerationError
from .model import RETURN_KINDS, Role

_SYSTEM_HEADERS = (
    "stdarg.h",
    "stddef.h",
    "setjmp.h",
    "stdint.h",
    "errno.h",
    "stdio.h",
    "stdlib.h",
    "string.h",
    "signal.h",
    "unistd.h",
    "sys/types.h",
    "sys/wait.h",
    "cmocka.h",
)

_TYPES = """\
#define RUNNER_EXIT_BAD_ARGUMENTS 255
#define RUNNER_MAX_EXIT_CODE 254

enum runner_result {
  RUNNER_PASSED = 0,
  RUNNER_FAILED = 1,
  RUNNER_ERRORED = 2,
  RUNNER_TIMED_OUT = 3,
  RUNNER_SKIPPED = 4
};

struct runner_test {
  const char *name;
  CMUnitTestFunction test;
  CMFixtureFunction setup;
  CMFixtureFunction teardown;
  int disabled;
  unsigned int timeout;
};

struct runner_group {
  const char *name;
  const struct runner_test *tests;
  size_t count;
};"""

_MAIN = """\
static const char *const runner_labels[] = {
  "[       OK ]",
  "[  FAILED  ]",
  "[  ERROR   ]",
  "[ TIMEOUT  ]",
  "[  SKIPPED ]"
};

static const struct runner_test *runner_current;
static int runner_fixture_failed;

static int runner_setup(void **state)
{
  if (runner_current->setup != NULL && runner_current->setup(state) != 0) {
    runner_fixture_failed = 1;
    return -1;
  }
  return 0;
}

static int runner_teardown(void **state)
{
  if (runner_current->teardown != NULL && runner_current->teardown(state) != 0) {
    runner_fixture_failed = 1;
    return -1;
  }
  return 0;
}

static int runner_child(const struct runner_group *group, const struct runner_test *test)
{
  struct CMUnitTest unit[1];
  int failed;

  runner_current = test;
  unit[0].name = test->name;
  unit[0].test_func = test->test;
  unit[0].setup_func = runner_setup;
  unit[0].teardown_func = runner_teardown;
  unit[0].initial_state = NULL;

  alarm(test->timeout);
  failed = cmocka_run_group_tests_name(group->name, unit, NULL, NULL);
  alarm(0);

  if (runner_fixture_failed)
    return RUNNER_ERRORED;
  return failed ? RUNNER_FAILED : RUNNER_PASSED;
}

static enum runner_result runner_run(const struct runner_group *group, const struct runner_test *test)
{
  pid_t pid;
  int status;

  fflush(stdout);
  fflush(stderr);
  pid = fork();
  if (pid < 0) {
    perror("fork");
    return RUNNER_ERRORED;
  }
  if (pid == 0) {
    status = runner_child(group, test);
    fflush(stdout);
    fflush(stderr);
    _exit(status);
  }

  while (waitpid(pid, &status, 0) < 0) {
    if (errno != EINTR) {
      perror("waitpid");
      return RUNNER_ERRORED;
    }
  }
  if (WIFSIGNALED(status))
    return WTERMSIG(status) == SIGALRM ? RUNNER_TIMED_OUT : RUNNER_ERRORED;
  if (WIFEXITED(status) && WEXITSTATUS(status) <= RUNNER_TIMED_OUT)
    return (enum runner_result)WEXITSTATUS(status);
  return RUNNER_ERRORED;
}

static int runner_selected(const char *name, int argc, char *argv[])
{
  int i;

  for (i = 1; i < argc; i++) {
    if (strcmp(name, argv[i]) == 0)
      return 1;
  }
  return 0;
}

static int runner_known(const char *name)
{
  const struct runner_group *group;
  size_t i;

  for (group = runner_groups; group->name != NULL; group++) {
    if (strcmp(group->name, name) == 0)
      return 1;
    for (i = 0; i < group->count; i++) {
      if (strcmp(group->tests[i].name, name) == 0)
        return 1;
    }
  }
  return 0;
}

int main(int argc, char *argv[])
{
  const struct runner_group *group;
  const struct runner_test *test;
  enum runner_result result;
  unsigned long counts[5] = { 0, 0, 0, 0, 0 };
  unsigned long failures;
  size_t i;
  int everything;

  for (i = 1; i < (size_t)argc; i++) {
    if (!runner_known(argv[i])) {
      fprintf(stderr, "unknown test or group: %s\\n", argv[i]);
      return RUNNER_EXIT_BAD_ARGUMENTS;
    }
  }

  for (group = runner_groups; group->name != NULL; group++) {
    everything = argc < 2 || runner_selected(group->name, argc, argv);
    for (i = 0; i < group->count; i++) {
      test = &group->tests[i];
      if (!everything && !runner_selected(test->name, argc, argv))
        continue;
      if (test->disabled) {
        result = RUNNER_SKIPPED;
      } else {
        printf("[ RUN      ] %s.%s\\n", group->name, test->name);
        result = runner_run(group, test);
      }
      if (result == RUNNER_TIMED_OUT)
        printf("%s %s.%s (%us)\\n", runner_labels[result], group->name, test->name, test->timeout);
      else
        printf("%s %s.%s\\n", runner_labels[result], group->name, test->name);
      counts[result]++;
    }
  }

  printf("[==========] %lu passed, %lu failed, %lu errored, %lu timed out, %lu skipped\\n",
         counts[RUNNER_PASSED], counts[RUNNER_FAILED], counts[RUNNER_ERRORED],
         counts[RUNNER_TIMED_OUT], counts[RUNNER_SKIPPED]);

  failures = counts[RUNNER_FAILED] + counts[RUNNER_ERRORED] + counts[RUNNER_TIMED_OUT];
  return failures > RUNNER_MAX_EXIT_CODE ? RUNNER_MAX_EXIT_CODE : (int)failures;
}"""


@dataclass(frozen=True)
class ManifestEntry:
    file: str
    symbol: str
    role: str


class RenderConfig:
    def __init__(self, *, includes=(), manifest_format="json"):
        self.includes = list(includes)
        self.manifest_format = manifest_format

    @classmethod
    def from_config(cls, cfg):
        return cls(includes=cfg["includes"], manifest_format=cfg["manifest_format"])


def _check(registry):
    if registry.errors:
        raise GenerationError(registry.errors)


def _include(header):
    if header.startswith(("<", '"')):
        return f"#include {header}"
    return f'#include "{header}"'


def manifest_entries(registry):
    """One entry per symbol used as a test or fixture, in input-file order."""
    order = {name: i for i, name in enumerate(registry.files)}
    used = [s for s in registry.symbols.values() if s.role is not Role.UNKNOWN]
    used.sort(key=lambda s: (order.get(s.filename, len(order)), s.filename, s.line, s.name))
    return [ManifestEntry(file=s.filename, symbol=s.name, role=s.role.value) for s in used]


def _fixture(name):
    return name if name else "NULL"


def _declarations(entries):
    parts = []
    current = None
    for entry in entries:
        if entry.file != current:
            if current is not None:
                parts.append("")
            parts.append(f"/* {entry.file} */")
            current = entry.file
        rtype = RETURN_KINDS[Role(entry.role)]
        parts.append(f"{rtype} {entry.symbol}(void **state);")
    return parts


def _tables(registry):
    parts = []
    for group in registry.groups:
        if not group.tests:
            continue
        parts.append(f"static const struct runner_test runner_group_{group.name}[] = {{")
        for t in group.tests:
            parts.append(
                f'  {{ "{t.name}", {t.symbol}, {_fixture(t.setup)}, '
                f"{_fixture(t.teardown)}, {int(t.disabled)}, {t.timeout} }},"
            )
        parts.append("};")
        parts.append("")

    parts.append("static const struct runner_group runner_groups[] = {")
    for group in registry.groups:
        if group.tests:
            parts.append(
                f'  {{ "{group.name}", runner_group_{group.name}, {len(group.tests)} }},'
            )
        else:
            parts.append(f'  {{ "{group.name}", NULL, 0 }},')
    parts.append("  { NULL, NULL, 0 }")
    parts.append("};")
    return parts


def render_runner(registry, cfg=None):
    """Return the runner's C source. Refuses registries that carry errors."""
    _check(registry)
    if cfg is None:
        cfg = RenderConfig()

    parts = ["/*", " * Test runner generated by cmocka-runner-gen. Do not edit.", " *"]
    if registry.files:
        parts.append(" * Sources:")
        parts += [f" *   {f}" for f in registry.files]
    else:
        parts.append(" * Sources: none")
    parts.append(" */")
    parts += [_include(f"<{h}>") for h in _SYSTEM_HEADERS]
    parts += [_include(h) for h in cfg.includes]
    parts.append("")

    decls = _declarations(manifest_entries(registry))
    if decls:
        parts += decls
        parts.append("")

    parts.append(_TYPES)
    parts.append("")
    parts += _tables(registry)
    parts.append("")
    parts.append(_MAIN)
    return "\n".join(parts) + "\n"


def render_manifest(registry, fmt="json", runner=None):
    _check(registry)
    entries = manifest_entries(registry)
    if fmt == "text":
        return "".join(f"{e.file}\t{e.symbol}\t{e.role}\n" for e in entries)
    if fmt != "json":
        raise ValueError(f"unknown manifest format '{fmt}'")
    data = {
        "runner": runner,
        "symbols": [{"file": e.file, "symbol": e.symbol, "role": e.role} for e in entries],
    }
    return json.dumps(data, indent=2) + "\n"
