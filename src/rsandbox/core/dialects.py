"""
Interpreter dialects - how to launch, frame and feed a given interpreter.

A dialect knows the argv of its long-lived REPL process, the environment it
runs under, how to wrap one submission so that failures become "ERROR:" lines
and the output is framed by per-call tokens, and how to express an uploaded
dataset as literal-construction code.

RDialect is the production default. PythonDialect drives the current Python
interpreter through a line-oriented loop; it runs pandas-style snippets and
keeps the end-to-end tests hermetic on hosts without R.
"""

from __future__ import annotations

import base64
import math
import os
import sys

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from rsandbox.core.validator import (
    PYTHON_RULES,
    R_RULES,
    ValidationRule,
    column_names,
    generate_safe_data_load,
    r_string_literal,
    safe_identifier,
    sanitize_variable_name,
)

#: Variables copied from the host environment into the interpreter's environment
PASSTHROUGH_ENV_VARS = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "TZ", "R_HOME", "SYSTEMROOT")

#: Prefix of the line carrying an inline plot (data URI) in R output
IMAGE_LINE_PREFIX = "IMAGE:"


def _base_env() -> dict[str, str]:
    """Minimal environment: host secrets never reach submitted code."""
    return {key: os.environ[key] for key in PASSTHROUGH_ENV_VARS if key in os.environ}


class InterpreterDialect(Protocol):
    """What the session and pool need from an interpreter."""

    name: str
    display_name: str
    default_executable: str
    rules: Sequence[ValidationRule]

    def argv(self, executable: str) -> list[str]: ...

    def version_argv(self, executable: str) -> list[str]: ...

    def env(self, max_memory: str) -> dict[str, str]: ...

    def wrap(self, code: str, begin: str, end: str) -> str: ...

    def data_load(self, rows: Sequence[Mapping[str, Any]], variable_name: str = "data") -> str: ...


# ============================================
# R
# ============================================


# The user's code travels as a string literal and is parsed inside tryCatch,
# so syntax errors are reported instead of leaving R waiting for more input.
# Top-level values are auto-printed like the R console; any plot drawn on the
# capture device is emitted as a base64 PNG data URI.
_R_WRAPPER = """local({{
  cat("{begin}\\n")
  .rsbx_png <- tempfile(fileext = ".png")
  .rsbx_dev <- tryCatch({{
    grDevices::png(.rsbx_png, width = 800, height = 600)
    grDevices::dev.cur()
  }}, error = function(e) NA)
  tryCatch({{
    for (.rsbx_expr in parse(text = {code}, keep.source = FALSE)) {{
      .rsbx_res <- withVisible(eval(.rsbx_expr, envir = globalenv()))
      if (.rsbx_res$visible) print(.rsbx_res$value)
    }}
  }}, error = function(e) {{
    cat("ERROR:", conditionMessage(e), "\\n")
  }})
  tryCatch({{
    if (!is.na(.rsbx_dev) && .rsbx_dev %in% grDevices::dev.list()) grDevices::dev.off(.rsbx_dev)
    if (file.exists(.rsbx_png) && file.info(.rsbx_png)$size > 0 &&
        requireNamespace("base64enc", quietly = TRUE)) {{
      cat("\\n{image_prefix}data:image/png;base64,", base64enc::base64encode(.rsbx_png), "\\n", sep = "")
    }}
    unlink(.rsbx_png)
  }}, error = function(e) NULL)
  cat("\\n{end}\\n")
  flush(stdout())
  invisible(NULL)
}})
"""


class RDialect:
    """GNU R read from stdin, one local({...}) block per submission."""

    name = "r"
    display_name = "R"
    default_executable = "R"
    rules = R_RULES

    def argv(self, executable: str) -> list[str]:
        # --vanilla skips site/user profiles and saved workspaces
        return [executable, "--vanilla", "--slave", "--no-readline"]

    def version_argv(self, executable: str) -> list[str]:
        return [executable, "--version"]

    def env(self, max_memory: str) -> dict[str, str]:
        env = _base_env()
        env["R_MAX_MEM_SIZE"] = max_memory
        return env

    def wrap(self, code: str, begin: str, end: str) -> str:
        return _R_WRAPPER.format(
            begin=begin,
            end=end,
            code=r_string_literal(code),
            image_prefix=IMAGE_LINE_PREFIX,
        )

    def data_load(self, rows: Sequence[Mapping[str, Any]], variable_name: str = "data") -> str:
        return generate_safe_data_load(rows, variable_name)


# ============================================
# PYTHON
# ============================================

# Each submission arrives as one base64 line; the namespace persists across calls
_PYTHON_DRIVER = (
    "import base64, sys\n"
    "_ns = {'__name__': '__sandbox__'}\n"
    "for _line in iter(sys.stdin.readline, ''):\n"
    "    exec(base64.b64decode(_line).decode('utf-8'), _ns)\n"
)

_PYTHON_WRAPPER = """print({begin!r}, flush=True)
try:
    exec(compile({code!r}, "<sandbox>", "exec"), globals())
except BaseException as _rsbx_error:
    print("ERROR:", _rsbx_error)
print("\\n" + {end!r}, flush=True)
"""


def _python_value(value: Any) -> Any:
    if value is None or isinstance(value, bool | int | str):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    return str(value)


class PythonDialect:
    """The host's Python interpreter driven by a stdin loop."""

    name = "python"
    display_name = "Python"
    default_executable = sys.executable
    rules = PYTHON_RULES

    def argv(self, executable: str) -> list[str]:
        # -I ignores PYTHON* variables and user site-packages
        return [executable, "-I", "-X", "utf8", "-u", "-c", _PYTHON_DRIVER]

    def version_argv(self, executable: str) -> list[str]:
        return [executable, "--version"]

    def env(self, max_memory: str) -> dict[str, str]:
        return _base_env()

    def wrap(self, code: str, begin: str, end: str) -> str:
        program = _PYTHON_WRAPPER.format(begin=begin, end=end, code=code)
        return base64.b64encode(program.encode("utf-8")).decode("ascii") + "\n"

    def data_load(self, rows: Sequence[Mapping[str, Any]], variable_name: str = "data") -> str:
        """Columns as a dict of lists, missing values as None."""
        target = safe_identifier(variable_name)
        columns = {
            sanitize_variable_name(column): [_python_value(row.get(column)) for row in rows]
            for column in column_names(rows)
        }
        return f"{target} = {columns!r}"


# ============================================
# REGISTRY
# ============================================

DIALECTS: dict[str, InterpreterDialect] = {
    RDialect.name: RDialect(),
    PythonDialect.name: PythonDialect(),
}


def get_dialect(name: str) -> InterpreterDialect:
    """Look up a dialect by name ('r' or 'python')."""
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown interpreter dialect '{name}' (expected one of {sorted(DIALECTS)})") from None


__all__ = [
    "DIALECTS",
    "IMAGE_LINE_PREFIX",
    "InterpreterDialect",
    "PythonDialect",
    "RDialect",
    "get_dialect",
]
