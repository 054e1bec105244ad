"""Tests for VIES failure classification.

Covers:
- Every keyword in the table, and first-match-wins ordering
- Heuristics for transport failures without a code
- Recoverability of each kind
- ValidityCheckError construction and wrapping
"""

from __future__ import annotations

import pytest

from vatwatch.lifecycle.classifier import (
    KEYWORD_TABLE,
    ValidityCheckError,
    ValidityErrorKind,
    classify,
)

# ── Keyword table ────────────────────────────────────────────────────


class TestKeywords:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("SERVICE_UNAVAILABLE", ValidityErrorKind.SERVICE_UNAVAILABLE),
            ("VIES error: MS_UNAVAILABLE", ValidityErrorKind.ENDPOINT_UNAVAILABLE),
            ("VIES error: MS_MAX_CONCURRENT_REQ", ValidityErrorKind.RATE_LIMITED_ENDPOINT),
            ("VIES error: GLOBAL_MAX_CONCURRENT_REQ", ValidityErrorKind.RATE_LIMITED_GLOBAL),
            ("TIMEOUT: read timed out", ValidityErrorKind.TIMEOUT),
            ("CONNECTION_ERROR: refused", ValidityErrorKind.CONNECTION_ERROR),
            ("VIES error: INVALID_INPUT", ValidityErrorKind.INVALID_INPUT),
        ],
    )
    def test_keyword_maps_to_kind(self, message, expected):
        assert classify(message) is expected

    def test_first_match_wins(self):
        """Both codes present; the earlier table entry decides."""
        assert classify("MS_UNAVAILABLE then INVALID_INPUT") is ValidityErrorKind.ENDPOINT_UNAVAILABLE
        assert classify("INVALID_INPUT, TIMEOUT") is ValidityErrorKind.TIMEOUT

    def test_table_order(self):
        assert [k for k, _ in KEYWORD_TABLE][0] == "SERVICE_UNAVAILABLE"
        assert [k for k, _ in KEYWORD_TABLE][-1] == "INVALID_INPUT"

    def test_keywords_are_case_sensitive(self):
        assert classify("ms_unavailable") is ValidityErrorKind.UNKNOWN


# ── Heuristics ───────────────────────────────────────────────────────


class TestHeuristics:
    def test_malformed_json(self):
        assert classify("Expecting value: line 1 column 1 (char 0)") is ValidityErrorKind.SERVICE_UNAVAILABLE

    def test_html_error_page(self):
        assert classify("got <HTML><body>Bad gateway") is ValidityErrorKind.SERVICE_UNAVAILABLE

    def test_unexpected_response(self):
        assert classify("Unexpected response from VIES (HTTP 200)") is ValidityErrorKind.SERVICE_UNAVAILABLE

    def test_connection_reset(self):
        assert classify("read ECONNRESET") is ValidityErrorKind.CONNECTION_ERROR
        assert classify("Server disconnected without sending a response.") is ValidityErrorKind.CONNECTION_ERROR

    def test_deadline(self):
        assert classify("connect ETIMEDOUT 1.2.3.4:443") is ValidityErrorKind.TIMEOUT
        assert classify("The read operation timed out") is ValidityErrorKind.TIMEOUT


# ── Unknown ──────────────────────────────────────────────────────────


class TestUnknown:
    def test_arbitrary_text(self):
        assert classify("Oops") is ValidityErrorKind.UNKNOWN

    def test_empty(self):
        assert classify("") is ValidityErrorKind.UNKNOWN
        assert classify(None) is ValidityErrorKind.UNKNOWN


# ── Recoverability ───────────────────────────────────────────────────


class TestRecoverable:
    @pytest.mark.parametrize(
        "kind",
        [
            ValidityErrorKind.SERVICE_UNAVAILABLE,
            ValidityErrorKind.ENDPOINT_UNAVAILABLE,
            ValidityErrorKind.RATE_LIMITED_ENDPOINT,
            ValidityErrorKind.RATE_LIMITED_GLOBAL,
            ValidityErrorKind.TIMEOUT,
            ValidityErrorKind.CONNECTION_ERROR,
        ],
    )
    def test_transient_kinds_are_recoverable(self, kind):
        assert kind.recoverable is True

    def test_invalid_input_is_terminal(self):
        assert ValidityErrorKind.INVALID_INPUT.recoverable is False

    def test_unknown_is_terminal(self):
        assert ValidityErrorKind.UNKNOWN.recoverable is False


# ── ValidityCheckError ───────────────────────────────────────────────


class TestValidityCheckError:
    def test_kind_derived_from_message(self):
        err = ValidityCheckError("VIES error: MS_UNAVAILABLE")
        assert err.kind is ValidityErrorKind.ENDPOINT_UNAVAILABLE
        assert err.recoverable is True
        assert err.message == "VIES error: MS_UNAVAILABLE"
        assert str(err) == "VIES error: MS_UNAVAILABLE"

    def test_explicit_kind_wins(self):
        err = ValidityCheckError("something odd", ValidityErrorKind.TIMEOUT)
        assert err.kind is ValidityErrorKind.TIMEOUT

    def test_from_exception_classifies_text(self):
        err = ValidityCheckError.from_exception(RuntimeError("Oops"))
        assert err.kind is ValidityErrorKind.UNKNOWN
        assert err.recoverable is False
        assert err.message == "Oops"

    def test_from_exception_without_text_uses_type_name(self):
        err = ValidityCheckError.from_exception(ConnectionResetError())
        assert err.message == "ConnectionResetError"

    def test_from_exception_passes_through(self):
        original = ValidityCheckError("TIMEOUT")
        assert ValidityCheckError.from_exception(original) is original

    def test_repr(self):
        assert "kind=timeout" in repr(ValidityCheckError("TIMEOUT"))
