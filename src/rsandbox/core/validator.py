"""
Static screening of submitted code.

The validator is a best-effort syntactic filter, not a security boundary: it
rejects code that matches known-dangerous patterns and package imports that
are not on the allow-list. Each interpreter dialect has one rule table
(R_RULES, PYTHON_RULES) so its policy can be audited in one place. The loop
and sequence-size rules are heuristics.

Also hosts the pure helpers the gateway uses to smuggle uploaded datasets
into the interpreter as literal-construction code.
"""

from __future__ import annotations

import math
import re

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from rsandbox.core.constants import MAX_CODE_LENGTH

# ============================================
# POLICY
# ============================================

#: Calls rejected outright: shell, file mutation, network/install, interpreter
#: re-entry, serialization, working directory, environment, process exit and
#: parallel/forking primitives.
DANGEROUS_FUNCTIONS: tuple[str, ...] = (
    "system",
    "system2",
    "shell",
    "shell.exec",
    "file.remove",
    "unlink",
    "file.rename",
    "download.file",
    "install.packages",
    "source",
    "sys.source",
    "eval",
    "evalq",
    "parse",
    "do.call",
    "save",
    "save.image",
    "saveRDS",
    "load",
    "readRDS",
    "unserialize",
    "setwd",
    "getwd",
    "Sys.setenv",
    "Sys.unsetenv",
    "q",
    "quit",
    "mclapply",
    "parLapply",
    "clusterApply",
    "makeCluster",
)

#: Packages that may be attached with library()/require() or referenced as pkg::
ALLOWED_PACKAGES: frozenset[str] = frozenset(
    {
        "ggplot2",
        "dplyr",
        "tidyr",
        "readr",
        "corrplot",
        "plotly",
        "lattice",
        "stats",
        "graphics",
        "grDevices",
        "utils",
        "methods",
        "base",
        "scales",
        "viridis",
        "RColorBrewer",
        "gridExtra",
        "patchwork",
        "forecast",
        "tseries",
        "xts",
        "caret",
        "randomForest",
        "e1071",
        "cluster",
        "factoextra",
        "igraph",
        "network",
        "leaflet",
        "sf",
        "sp",
        "base64enc",
    }
)

# R identifiers may contain dots, so "my.eval(" must not match "eval("
_NAME_START = r"(?<![A-Za-z0-9_.])"

# Numeric literal of 1e6 or more written in scientific notation, or 7+ digits
_BIG_NUMBER = r"(?:\d+(?:\.\d+)?[eE]\+?(?:[6-9]|\d{2,})|\d{7,})"


@dataclass(frozen=True, slots=True)
class ValidationRule:
    """One declarative rule: a pattern, the reason reported, and its category.

    When `allowed` is set, the rule captures a `name` group and only fires for
    names outside that set. With `name_list`, the group is a comma-separated
    import list ("a.b as c, d") and each top-level module is checked. The
    reason may reference `{name}`.
    """

    category: str
    pattern: re.Pattern[str]
    reason: str
    allowed: frozenset[str] | None = None
    name_list: bool = False

    def _names(self, match: re.Match[str]) -> list[str]:
        if "name" not in self.pattern.groupindex:
            return [match.group(0)]
        raw = match.group("name")
        if not self.name_list:
            return [raw]
        return [part.strip().split(" ")[0].split(".")[0] for part in raw.split(",")]

    def check(self, code: str) -> str | None:
        """Return the formatted reason for the first violation, or None."""
        for match in self.pattern.finditer(code):
            for name in self._names(match):
                if self.allowed is not None and name in self.allowed:
                    continue
                return self.reason.format(name=name)
        return None


def _dangerous_call_rule(func: str) -> ValidationRule:
    return ValidationRule(
        category="dangerous_function",
        pattern=re.compile(rf"{_NAME_START}{re.escape(func)}\s*\(", re.IGNORECASE),
        reason=f"Dangerous function detected: {func}",
    )


def _attach_rule(package: str) -> ValidationRule:
    return ValidationRule(
        category="dangerous_function",
        pattern=re.compile(rf"{_NAME_START}(?:library|require)\s*\(\s*[\"']?{package}[\"']?\s*\)", re.IGNORECASE),
        reason=f"Dangerous function detected: library({package})",
    )


def _family_rule(category: str, reason: str, patterns: Iterable[str], flags: int = re.IGNORECASE) -> ValidationRule:
    return ValidationRule(
        category=category,
        pattern=re.compile("|".join(f"(?:{p})" for p in patterns), flags),
        reason=reason,
    )


FILE_SYSTEM_PATTERNS: tuple[str, ...] = (
    rf"{_NAME_START}file\s*\.\s*(?:create|remove|rename|copy|exists|info|append|symlink|link)",
    rf"{_NAME_START}dir\s*\.\s*(?:create|exists)",
    rf"{_NAME_START}read\s*\.\s*(?:csv2?|table|delim2?|xlsx|json|fwf|dcf)",
    rf"{_NAME_START}write\s*\.\s*(?:csv2?|table|xlsx|json|dcf)",
    rf"{_NAME_START}(?:read|write)_(?:csv2?|tsv|delim|lines|file|rds|table)\s*\(",
    rf"{_NAME_START}readLines\s*\(",
    rf"{_NAME_START}list\.files\s*\(",
    rf"{_NAME_START}file\s*\(",
    rf"{_NAME_START}scan\s*\(",
    rf"{_NAME_START}sink\s*\(",
    r"connection\s*\(",
)

NETWORK_PATTERNS: tuple[str, ...] = (
    rf"{_NAME_START}url\s*\(",
    r"download\s*\.\s*file",
    rf"{_NAME_START}(?:httr2?|RCurl|curl|jsonlite)\s*::",
    rf"{_NAME_START}socketConnection\s*\(",
)

R_RULES: tuple[ValidationRule, ...] = (
    *(_dangerous_call_rule(func) for func in DANGEROUS_FUNCTIONS),
    _attach_rule("parallel"),
    _attach_rule("foreach"),
    _family_rule("file_system", "File system access is not allowed", FILE_SYSTEM_PATTERNS),
    _family_rule("network", "Network access is not allowed", NETWORK_PATTERNS),
    _family_rule("backtick", "Backtick command execution is not allowed", [r"`[^`]+`"], flags=0),
    _family_rule(
        "system_command",
        "System command execution is not allowed",
        [rf"{_NAME_START}(?:system|shell|pipe)\s*\("],
        flags=0,
    ),
    ValidationRule(
        category="package",
        pattern=re.compile(
            rf"{_NAME_START}(?:library|require|requireNamespace|loadNamespace|attachNamespace)"
            r"\s*\(\s*[\"']?(?P<name>[A-Za-z][A-Za-z0-9._]*)[\"']?"
        ),
        reason="Package '{name}' is not allowed",
        allowed=ALLOWED_PACKAGES,
    ),
    ValidationRule(
        category="package",
        pattern=re.compile(rf"{_NAME_START}(?P<name>[A-Za-z][A-Za-z0-9._]*)\s*:::?"),
        reason="Package '{name}' is not allowed",
        allowed=ALLOWED_PACKAGES,
    ),
    _family_rule(
        "infinite_loop",
        "Potentially infinite loops are not allowed",
        [r"while\s*\(\s*(?:TRUE|T|1L?)\s*\)", rf"{_NAME_START}repeat\s*\{{"],
        flags=0,
    ),
    _family_rule(
        "large_sequence",
        "Generation of very large sequences is not allowed",
        [
            rf"{_NAME_START}(?:seq|seq_len|rep|rep_len|numeric|character|vector|rnorm|runif|sample)"
            rf"\s*\([^)]*{_BIG_NUMBER}",
            rf"\d+\s*:\s*{_BIG_NUMBER}",
        ],
        flags=0,
    ),
)


# ---------------------------------------------
# Python
# ---------------------------------------------

#: Builtins that evaluate strings, open files, reach the namespace or leave the process
PYTHON_DANGEROUS_BUILTINS: tuple[str, ...] = (
    "exec",
    "eval",
    "compile",
    "open",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "exit",
    "quit",
)

#: Top-level modules that may be imported
ALLOWED_PYTHON_MODULES: frozenset[str] = frozenset(
    {
        "math",
        "cmath",
        "statistics",
        "random",
        "json",
        "datetime",
        "time",
        "calendar",
        "collections",
        "itertools",
        "functools",
        "operator",
        "re",
        "string",
        "textwrap",
        "decimal",
        "fractions",
        "numbers",
        "typing",
        "dataclasses",
        "enum",
        "heapq",
        "bisect",
        "copy",
        "pprint",
        "numpy",
        "pandas",
        "scipy",
        "sklearn",
        "statsmodels",
    }
)

# Attribute access counts as part of the name: df.eval( is a method, not the builtin
_PY_NAME_START = r"(?<![A-Za-z0-9_.])"

_PY_BIG_NUMBER = rf"(?:{_BIG_NUMBER}|\d{{1,3}}(?:_\d{{3}}){{2,}}|10\s*\*\*\s*(?:[6-9]|\d{{2,}}))"

_PY_IMPORT_ITEM = r"[A-Za-z_][\w.]*(?:[ \t]+as[ \t]+\w+)?"


def _python_call_rule(func: str) -> ValidationRule:
    return ValidationRule(
        category="dangerous_function",
        pattern=re.compile(rf"{_PY_NAME_START}{re.escape(func)}\s*\("),
        reason=f"Dangerous function detected: {func}",
    )


PYTHON_FILE_SYSTEM_PATTERNS: tuple[str, ...] = (
    rf"{_PY_NAME_START}(?:os|sys|shutil|pathlib|glob|tempfile|io|fileinput|pickle|shelve)\s*\.",
    rf"{_PY_NAME_START}Path\s*\(",
    rf"{_PY_NAME_START}(?:pd|pandas)\s*\.\s*read_\w+\s*\(",
    r"\.\s*to_(?:csv|excel|json|parquet|pickle|sql|hdf|feather|html|latex|clipboard|stata|orc|xml)\s*\(",
    rf"{_PY_NAME_START}(?:np|numpy)\s*\.\s*"
    r"(?:load|save|savez|savez_compressed|savetxt|loadtxt|genfromtxt|fromfile|memmap)\s*\(",
    r"\.\s*tofile\s*\(",
)

PYTHON_NETWORK_PATTERNS: tuple[str, ...] = (
    rf"{_PY_NAME_START}(?:socket|urllib|urllib3|http|requests|httpx|aiohttp|ftplib|smtplib|telnetlib|ssl)\s*\.",
)

PYTHON_RULES: tuple[ValidationRule, ...] = (
    *(_python_call_rule(func) for func in PYTHON_DANGEROUS_BUILTINS),
    _family_rule("dunder", "Dunder names are not allowed", [r"__\w+__"], flags=0),
    _family_rule(
        "system_command",
        "System command execution is not allowed",
        [
            r"(?<![A-Za-z0-9_])(?:system|popen|spawn[lv]p?e?|exec[lv]p?e?|fork|forkpty)\s*\(",
            rf"{_PY_NAME_START}subprocess\s*\.",
        ],
        flags=0,
    ),
    _family_rule("file_system", "File system access is not allowed", PYTHON_FILE_SYSTEM_PATTERNS, flags=0),
    _family_rule("network", "Network access is not allowed", PYTHON_NETWORK_PATTERNS, flags=0),
    ValidationRule(
        category="package",
        pattern=re.compile(
            rf"(?:^|[;:])[ \t]*import[ \t]+(?P<name>{_PY_IMPORT_ITEM}(?:[ \t]*,[ \t]*{_PY_IMPORT_ITEM})*)",
            re.MULTILINE,
        ),
        reason="Module '{name}' is not allowed",
        allowed=ALLOWED_PYTHON_MODULES,
        name_list=True,
    ),
    ValidationRule(
        category="package",
        pattern=re.compile(r"(?:^|[;:])[ \t]*from[ \t]+(?P<name>\.*[\w.]*)[ \t]+import\b", re.MULTILINE),
        reason="Module '{name}' is not allowed",
        allowed=ALLOWED_PYTHON_MODULES,
        name_list=True,
    ),
    _family_rule(
        "infinite_loop",
        "Potentially infinite loops are not allowed",
        [r"while\s*\(?\s*(?:True|1)\s*\)?\s*:", r"itertools\s*\.\s*(?:count|cycle)\s*\("],
        flags=0,
    ),
    _family_rule(
        "large_sequence",
        "Generation of very large sequences is not allowed",
        [
            rf"(?<![A-Za-z0-9_])(?:range|zeros|ones|empty|full|arange|repeat)\s*\([^)]*{_PY_BIG_NUMBER}",
            rf"\]\s*\*\s*{_PY_BIG_NUMBER}",
        ],
        flags=0,
    ),
)

#: Code containing NUL cannot be passed to an interpreter as source
_NUL = "\x00"


# ============================================
# DATA CLASSES
# ============================================


@dataclass(frozen=True, slots=True)
class ValidationVerdict:
    """Outcome of validating one code string."""

    safe: bool
    reason: str | None = None
    category: str | None = None


SAFE = ValidationVerdict(safe=True)


# ============================================
# VALIDATOR
# ============================================


class CodeValidator:
    """Screens source against the length ceiling and one rule table, in order.

    Defaults to R_RULES; the session pool passes its dialect's table.
    Stateless apart from its configuration; safe to share between tasks.
    """

    def __init__(self, max_code_length: int = MAX_CODE_LENGTH, rules: Sequence[ValidationRule] = R_RULES) -> None:
        self.max_code_length = max_code_length
        self.rules = tuple(rules)

    def validate(self, code: str) -> ValidationVerdict:
        """Return the first violation found, or a safe verdict."""
        if len(code) > self.max_code_length:
            return ValidationVerdict(
                safe=False,
                reason="Code exceeds maximum allowed length",
                category="length",
            )
        if _NUL in code:
            return ValidationVerdict(safe=False, reason="Code contains NUL characters", category="encoding")

        for rule in self.rules:
            reason = rule.check(code)
            if reason is not None:
                return ValidationVerdict(safe=False, reason=reason, category=rule.category)

        return SAFE


# ============================================
# DATASET HELPERS
# ============================================


def sanitize_variable_name(name: str) -> str:
    """Restrict a caller-supplied name to [A-Za-z0-9_]."""
    return re.sub(r"[^A-Za-z0-9_]", "_", name)


def safe_identifier(name: str) -> str:
    """Sanitized name that is also a syntactic identifier (R and Python)."""
    sanitized = sanitize_variable_name(name)
    if not sanitized or not sanitized[0].isalpha():
        sanitized = f"df_{sanitized}"
    return sanitized


_R_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _r_escape_char(char: str) -> str:
    if char in _R_ESCAPES:
        return _R_ESCAPES[char]
    if char == _NUL:
        return ""  # R strings cannot hold NUL
    if ord(char) < 0x20 or ord(char) == 0x7F:
        return f"\\x{ord(char):02x}"
    return char


def r_string_literal(value: str) -> str:
    """Double-quoted R literal; NUL is dropped and other control characters become \\xNN."""
    return '"' + "".join(_r_escape_char(char) for char in value) + '"'


def _r_literal(value: Any) -> str:
    if value is None:
        return "NA"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NA"
        if math.isinf(value):
            return "Inf" if value > 0 else "-Inf"
        return repr(value)
    return r_string_literal(str(value))


def column_names(rows: Sequence[Mapping[str, Any]]) -> list[str]:
    """Column order is first appearance across rows."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(str(key), None)
    return list(seen)


def generate_safe_data_load(rows: Sequence[Mapping[str, Any]], variable_name: str = "data") -> str:
    """Build R code that constructs `rows` as a data.frame bound to `variable_name`.

    Strings are escaped, missing values become NA, and column names are
    sanitized then quoted, so nothing from the payload can escape its literal.
    """
    target = safe_identifier(variable_name)
    columns = column_names(rows)
    if not columns:
        return f"{target} <- data.frame()"

    vectors = []
    for column in columns:
        values = ", ".join(_r_literal(row.get(column)) for row in rows)
        vectors.append(f'  "{sanitize_variable_name(column)}" = c({values})')

    body = ",\n".join(vectors)
    return f"{target} <- data.frame(\n{body},\n  stringsAsFactors = FALSE,\n  check.names = FALSE\n)"


__all__ = [
    "ALLOWED_PACKAGES",
    "ALLOWED_PYTHON_MODULES",
    "DANGEROUS_FUNCTIONS",
    "PYTHON_DANGEROUS_BUILTINS",
    "PYTHON_RULES",
    "R_RULES",
    "CodeValidator",
    "ValidationRule",
    "ValidationVerdict",
    "column_names",
    "generate_safe_data_load",
    "r_string_literal",
    "safe_identifier",
    "sanitize_variable_name",
]
