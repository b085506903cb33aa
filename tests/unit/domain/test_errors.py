"""Unit tests for the matrixci error taxonomy."""

from __future__ import annotations

import pytest

from matrixci.domain.errors import CommandError, InstallError, MatrixError, NetworkError


def test_command_error_is_not_retryable() -> None:
    error = CommandError(step="configure", detail="exit code 77", exit_code=77)

    assert isinstance(error, MatrixError)
    assert not error.retryable
    assert error.code == "command"
    assert "step=configure" in str(error)
    assert "exit_code=77" in str(error)


def test_network_error_is_retryable_and_records_attempt() -> None:
    error = NetworkError(step="fetch", detail="timed out", attempt=2, timed_out=True)

    assert error.retryable
    assert error.attempt == 2
    assert "attempt=2" in str(error)
    assert "timed_out=true" in str(error)


def test_network_error_rejects_non_positive_attempt() -> None:
    with pytest.raises(ValueError):
        NetworkError(step="fetch", detail="x", attempt=0)


def test_install_error_wraps_cause() -> None:
    cause = NetworkError(step="fetch", detail="connection reset", attempt=3)
    error = InstallError(step="fetch", cause=cause, attempts=3)

    assert error.cause is cause
    assert error.attempts == 3
    assert error.detail == "connection reset"
    assert not error.retryable
    assert "cause=network" in str(error)


def test_detail_whitespace_is_collapsed() -> None:
    error = CommandError(step="build", detail="line one\n\n  line two  ")

    assert error.detail == "line one line two"
    assert CommandError(step="build", detail="").detail == "no detail"
