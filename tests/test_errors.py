"""Tests for error formatting, fallback handling and argument validation."""

from __future__ import annotations

import logging

import pytest

from jenkins_admin.errors import (
    format_error_message,
    handle_error_with_default,
    require_directory_exists,
    require_non_empty,
    require_non_null,
    require_positive,
    with_error_handling,
)


class TestFormatErrorMessage:
    def test_plain(self):
        assert format_error_message("listing", ValueError("bad")) == "Error during listing: bad"

    def test_with_cause(self):
        try:
            try:
                raise KeyError("k")
            except KeyError as inner:
                raise RuntimeError("outer") from inner
        except RuntimeError as exc:
            message = format_error_message("op", exc)
        assert message == "Error during op: outer (Caused by: KeyError: 'k')"


class TestWithErrorHandling:
    def test_returns_result(self):
        assert with_error_handling("op", lambda: 42) == 42

    def test_default_on_failure(self, caplog):
        def _boom():
            raise RuntimeError("nope")

        with caplog.at_level(logging.WARNING):
            assert with_error_handling("reading nodes", _boom, default=[]) == []
        assert "Error during reading nodes: nope" in caplog.text

    def test_none_is_a_valid_default(self):
        def _boom():
            raise RuntimeError("nope")

        assert with_error_handling("op", _boom, default=None) is None

    def test_reraises_without_default(self, caplog):
        def _boom():
            raise RuntimeError("nope")

        with caplog.at_level(logging.ERROR), pytest.raises(RuntimeError):
            with_error_handling("op", _boom)
        assert any(r.levelno == logging.ERROR for r in caplog.records)


class TestHandleErrorWithDefault:
    def test_returns_default(self):
        assert handle_error_with_default("op", ValueError("x"), False) is False


class TestValidation:
    def test_non_null(self):
        assert require_non_null(0, "value") == 0
        with pytest.raises(ValueError, match="value must not be null"):
            require_non_null(None, "value")

    def test_non_empty_strips(self):
        assert require_non_empty("  job  ", "Job name") == "job"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_non_empty_rejects(self, text):
        with pytest.raises(ValueError, match="Job name"):
            require_non_empty(text, "Job name")

    def test_positive_falls_back(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert require_positive(0, "buildTotal", 100) == 100
        assert "buildTotal must be positive" in caplog.text
        assert require_positive(5, "buildTotal", 100) == 5

    def test_directory_exists(self, tmp_path):
        assert require_directory_exists(str(tmp_path), "Backup") == str(tmp_path)
        with pytest.raises(ValueError):
            require_directory_exists(str(tmp_path / "missing"), "Backup")
