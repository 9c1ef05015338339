"""Tests for the code validator and dataset loader helpers."""

from __future__ import annotations

import pytest

from rsandbox.core.validator import (
    ALLOWED_PACKAGES,
    PYTHON_RULES,
    CodeValidator,
    column_names,
    generate_safe_data_load,
    r_string_literal,
    safe_identifier,
    sanitize_variable_name,
)


@pytest.fixture
def validator() -> CodeValidator:
    return CodeValidator()


class TestDangerousFunctions:
    """Calls rejected outright."""

    @pytest.mark.parametrize(
        ("code", "name"),
        [
            ('system("rm -rf /")', "system"),
            ('system2("ls")', "system2"),
            ('x <- eval(parse(text = "1"))', "eval"),
            ('install.packages("evil")', "install.packages"),
            ('Sys.setenv(HOME = "/tmp")', "Sys.setenv"),
            ('saveRDS(data, "out.rds")', "saveRDS"),
            ('setwd("/")', "setwd"),
            ("q()", "q"),
            ('do.call("rm", list())', "do.call"),
        ],
    )
    def test_rejected_with_function_name(self, validator: CodeValidator, code: str, name: str) -> None:
        verdict = validator.validate(code)

        assert verdict.safe is False
        assert verdict.category == "dangerous_function"
        assert verdict.reason == f"Dangerous function detected: {name}"

    def test_match_is_case_insensitive(self, validator: CodeValidator) -> None:
        verdict = validator.validate('SYSTEM("ls")')
        assert verdict.safe is False
        assert verdict.category == "dangerous_function"

    def test_dotted_identifier_is_not_a_dangerous_call(self, validator: CodeValidator) -> None:
        assert validator.validate("my.eval <- function(x) x\nmy.eval(1)").safe is True

    def test_longer_identifier_is_not_a_dangerous_call(self, validator: CodeValidator) -> None:
        assert validator.validate("x <- seq(1, 10)\nprint(x)").safe is True

    @pytest.mark.parametrize("package", ["parallel", "foreach"])
    def test_parallel_packages_rejected(self, validator: CodeValidator, package: str) -> None:
        verdict = validator.validate(f"library({package})")
        assert verdict.safe is False
        assert verdict.reason == f"Dangerous function detected: library({package})"


class TestFamilies:
    """Pattern families reported by category."""

    @pytest.mark.parametrize(
        "code",
        [
            'readLines("/etc/passwd")',
            'x <- read.csv("data.csv")',
            'write.csv(data, "out.csv")',
            'list.files("/")',
            'con <- file("x.txt")',
            'sink("log.txt")',
        ],
    )
    def test_file_system(self, validator: CodeValidator, code: str) -> None:
        verdict = validator.validate(code)
        assert verdict.safe is False
        assert verdict.category == "file_system"
        assert verdict.reason == "File system access is not allowed"

    @pytest.mark.parametrize(
        "code",
        [
            'u <- url("http://example.com")',
            'httr::GET("http://example.com")',
            'jsonlite::fromJSON("http://example.com")',
        ],
    )
    def test_network(self, validator: CodeValidator, code: str) -> None:
        verdict = validator.validate(code)
        assert verdict.safe is False
        assert verdict.category == "network"

    def test_backtick_execution(self, validator: CodeValidator) -> None:
        verdict = validator.validate("x <- `ls -la`")
        assert verdict.safe is False
        assert verdict.category == "backtick"

    def test_pipe_is_a_system_command(self, validator: CodeValidator) -> None:
        verdict = validator.validate('p <- pipe("ls")')
        assert verdict.safe is False
        assert verdict.category == "system_command"

    @pytest.mark.parametrize("code", ["while (TRUE) { x <- 1 }", "while(T) {}", "repeat { x <- 1 }"])
    def test_infinite_loops(self, validator: CodeValidator, code: str) -> None:
        verdict = validator.validate(code)
        assert verdict.safe is False
        assert verdict.category == "infinite_loop"

    @pytest.mark.parametrize("code", ["x <- rnorm(1e9)", "x <- 1:10000000", "v <- numeric(5e7)"])
    def test_large_sequences(self, validator: CodeValidator, code: str) -> None:
        verdict = validator.validate(code)
        assert verdict.safe is False
        assert verdict.category == "large_sequence"

    def test_bounded_loop_and_small_sequence_are_safe(self, validator: CodeValidator) -> None:
        code = "total <- 0\nfor (i in 1:100) total <- total + i\nwhile (total > 0) total <- total - 1000"
        assert validator.validate(code).safe is True


class TestPackages:
    """Package allow-list."""

    def test_unlisted_library_rejected(self, validator: CodeValidator) -> None:
        verdict = validator.validate("library(Rcpp)")
        assert verdict.safe is False
        assert verdict.category == "package"
        assert verdict.reason == "Package 'Rcpp' is not allowed"

    def test_unlisted_namespace_reference_rejected(self, validator: CodeValidator) -> None:
        verdict = validator.validate('Rcpp::cppFunction("int f() { return 1; }")')
        assert verdict.safe is False
        assert verdict.reason == "Package 'Rcpp' is not allowed"

    def test_quoted_require_rejected(self, validator: CodeValidator) -> None:
        verdict = validator.validate('require("processx")')
        assert verdict.safe is False
        assert verdict.category == "package"

    @pytest.mark.parametrize("package", sorted(ALLOWED_PACKAGES))
    def test_allowed_packages_attach(self, validator: CodeValidator, package: str) -> None:
        assert validator.validate(f"library({package})").safe is True

    def test_allowed_namespace_reference(self, validator: CodeValidator) -> None:
        assert validator.validate("dplyr::filter(data, value > 1)").safe is True


class TestSafeCode:
    @pytest.mark.parametrize(
        "code",
        [
            "print(mean(c(1, 2, 3)))",
            "summary(data)",
            "library(ggplot2)\nggplot(data, aes(x = value)) + geom_histogram(bins = 10)",
            "model <- lm(value ~ count, data = data)\nprint(coef(model))",
            'cat("Mean:", mean(data$value), "\\n")',
        ],
    )
    def test_ordinary_analysis_passes(self, validator: CodeValidator, code: str) -> None:
        verdict = validator.validate(code)
        assert verdict.safe is True
        assert verdict.reason is None
        assert verdict.category is None


class TestPythonRules:
    """Rule table used when the pool runs the Python dialect."""

    @pytest.fixture
    def python_validator(self) -> CodeValidator:
        return CodeValidator(rules=PYTHON_RULES)

    @pytest.mark.parametrize(
        ("code", "category"),
        [
            ('os.system("rm -rf /")', "system_command"),
            ('import os\nos.system("ls")', "system_command"),
            ("import subprocess\nsubprocess.run(['ls'])", "system_command"),
            ('os.popen("id").read()', "system_command"),
            ('open("/etc/passwd").read()', "dangerous_function"),
            ('eval("1 + 1")', "dangerous_function"),
            ("getattr(data, 'to_csv')('x.csv')", "dangerous_function"),
            ('__import__("os")', "dunder"),
            ("().__class__.__bases__", "dunder"),
            ('pd.read_csv("/etc/passwd")', "file_system"),
            ('data.to_csv("out.csv")', "file_system"),
            ('requests.get("http://example.com")', "network"),
            ("import socket", "package"),
            ("from os import path", "package"),
            ("import numpy as np, shutil", "package"),
            ("while True:\n    pass", "infinite_loop"),
            ("x = list(range(10**9))", "large_sequence"),
            ("x = np.zeros(100_000_000)", "large_sequence"),
        ],
    )
    def test_rejected(self, python_validator: CodeValidator, code: str, category: str) -> None:
        verdict = python_validator.validate(code)

        assert verdict.safe is False
        assert verdict.category == category

    def test_unlisted_module_is_named(self, python_validator: CodeValidator) -> None:
        verdict = python_validator.validate("import math\nimport ctypes")
        assert verdict.reason == "Module 'ctypes' is not allowed"

    @pytest.mark.parametrize(
        "code",
        [
            "import pandas as pd\nprint(data.describe())",
            "import math\nprint(math.sqrt(16))",
            "from collections import Counter\nprint(Counter([1, 1, 2]))",
            "import numpy as np, statistics\nprint(np.mean([1, 2]), statistics.median([1, 2]))",
            "print(data.eval('value * 2'))",
            "for i in range(10):\n    print(i)",
            "print(sum(data['value']))",
        ],
    )
    def test_ordinary_analysis_passes(self, python_validator: CodeValidator, code: str) -> None:
        assert python_validator.validate(code).safe is True

    def test_r_rules_do_not_cover_python(self, validator: CodeValidator) -> None:
        # The R table alone misses this; the Python table must catch it
        assert CodeValidator(rules=PYTHON_RULES).validate("import shutil").safe is False
        assert validator.validate("import shutil").safe is True


class TestLength:
    def test_over_length_rejected_first(self) -> None:
        verdict = CodeValidator(max_code_length=10).validate('system("x")  ')
        assert verdict.safe is False
        assert verdict.category == "length"
        assert verdict.reason == "Code exceeds maximum allowed length"

    def test_exact_length_accepted(self) -> None:
        assert CodeValidator(max_code_length=8).validate("print(1)").safe is True

    def test_nul_character_rejected(self, validator: CodeValidator) -> None:
        verdict = validator.validate("print(1)\x00")
        assert verdict.safe is False
        assert verdict.category == "encoding"
        assert verdict.reason == "Code contains NUL characters"


class TestDatasetHelpers:
    def test_sanitize_variable_name(self) -> None:
        assert sanitize_variable_name("my var-1") == "my_var_1"
        assert sanitize_variable_name("ok_name") == "ok_name"

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("data", "data"), ("1bad-name", "df_1bad_name"), ("", "df_"), ("_hidden", "df__hidden")],
    )
    def test_safe_identifier(self, name: str, expected: str) -> None:
        assert safe_identifier(name) == expected

    def test_r_string_literal_escapes(self) -> None:
        assert r_string_literal('a "quoted"\nline\\') == '"a \\"quoted\\"\\nline\\\\"'

    def test_r_string_literal_control_characters(self) -> None:
        assert r_string_literal("a\x00b") == '"ab"'
        assert r_string_literal("bell\x07 esc\x1b del\x7f") == '"bell\\x07 esc\\x1b del\\x7f"'

    def test_column_order_is_first_appearance(self) -> None:
        rows = [{"b": 1}, {"a": 2, "b": 3}, {"c": 4}]
        assert column_names(rows) == ["b", "a", "c"]

    def test_data_load_literals(self) -> None:
        rows = [
            {"name": 'x"y', "value": 1.5, "flag": True},
            {"value": float("nan"), "flag": False},
            {"name": "z", "value": float("inf")},
        ]

        code = generate_safe_data_load(rows)

        assert code.startswith("data <- data.frame(\n")
        assert '"name" = c("x\\"y", NA, "z")' in code
        assert '"value" = c(1.5, NA, Inf)' in code
        assert '"flag" = c(TRUE, FALSE, NA)' in code
        assert "stringsAsFactors = FALSE" in code

    def test_data_load_sanitizes_columns_and_target(self) -> None:
        code = generate_safe_data_load([{'a"); system("ls': 1}], variable_name="my data")

        assert code.startswith("my_data <- data.frame(")
        assert '"a____system__ls" = c(1)' in code
        assert CodeValidator().validate(code).safe is True

    def test_data_load_empty(self) -> None:
        assert generate_safe_data_load([]) == "data <- data.frame()"
