"""Unit tests for pinegate/errors.

Tests verify:
- every code is registered with the right category
- retryable flags match the grant failure semantics
- domain exceptions carry codes, HTTP statuses and remediation
"""

import pytest

from pinegate.errors import (
    ERROR_REGISTRY,
    AmbiguousResponseError,
    ConflictError,
    CredentialError,
    DomainError,
    ErrorCategory,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
    get_error,
    get_errors_by_category,
)


@pytest.mark.parametrize(
    "code,category",
    [
        ("E-1001", ErrorCategory.VALIDATION),
        ("E-1005", ErrorCategory.VALIDATION),
        ("E-2001", ErrorCategory.CREDENTIAL),
        ("E-2005", ErrorCategory.CREDENTIAL),
        ("E-3001", ErrorCategory.NOT_FOUND),
        ("E-3002", ErrorCategory.NOT_FOUND),
        ("E-4001", ErrorCategory.EXTERNAL),
        ("E-4004", ErrorCategory.EXTERNAL),
        ("E-5001", ErrorCategory.SYSTEM),
    ],
)
def test_codes_registered(code, category):
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.remediation


def test_registry_keys_match_codes():
    for code, error in ERROR_REGISTRY.items():
        assert error.code == code


def test_unknown_code():
    assert get_error("E-9999") is None


def test_by_category():
    codes = {e.code for e in get_errors_by_category(ErrorCategory.NOT_FOUND)}
    assert codes == {"E-3001", "E-3002", "E-3003"}


class TestRetryable:

    def test_validation_and_credential_not_retryable(self):
        assert not ValidationError("bad").is_retryable
        assert not CredentialError("expired", code="E-2003").is_retryable
        assert not NotFoundError("gone", code="E-3001").is_retryable

    def test_external_errors_retryable(self):
        assert ExternalServiceError("503").is_retryable

    def test_conflict_retryable(self):
        assert ConflictError("busy").is_retryable


class TestDomainErrors:

    @pytest.mark.parametrize(
        "exc_class,code,status",
        [
            (ValidationError, "E-1001", 400),
            (ConflictError, "E-1005", 409),
            (CredentialError, "E-2001", 400),
            (NotFoundError, "E-3003", 404),
            (ExternalServiceError, "E-4001", 502),
            (AmbiguousResponseError, "E-4004", 200),
            (DomainError, "E-5001", 500),
        ],
    )
    def test_defaults(self, exc_class, code, status):
        exc = exc_class("message")
        assert exc.code == code
        assert exc.http_status == status
        assert str(exc) == "message"

    def test_explicit_code_and_details(self):
        exc = NotFoundError("no script", code="E-3002", details={"pine_id": "X"})
        assert exc.code == "E-3002"
        assert exc.details == {"pine_id": "X"}
        assert exc.remediation == get_error("E-3002").remediation

    def test_external_status_code(self):
        exc = ExternalServiceError("HTTP 503", status_code=503)
        assert exc.status_code == 503

    def test_to_dict(self):
        exc = ValidationError("missing pine_id")
        assert exc.to_dict() == {
            "error": "missing pine_id",
            "code": "E-1001",
            "type": "ValidationError",
            "retryable": False,
        }

    def test_unregistered_code_has_empty_remediation(self):
        assert DomainError("x", code="E-0000").remediation == ""
