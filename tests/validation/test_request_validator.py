import pytest

from bulkgrant.errors import RequestValidationError
from bulkgrant.validation.validator import PREVIEW_SCHEMA, SchemaValidator, ordered_unique, split_emails


def _request(**overrides):
    request = {
        "requester_id": "admin-1",
        "user_emails": ["a@example.com"],
        "project_ids": ["p1"],
        "role": "project_user",
        "credential": "token",
    }
    request.update(overrides)
    return request


def test_request_validation_accepts_minimal_payload():
    SchemaValidator().validate_request(_request())


def test_request_validation_rejects_unknown_fields():
    with pytest.raises(RequestValidationError):
        SchemaValidator().validate_request(_request(priority="high"))


def test_request_validation_rejects_missing_credential():
    request = _request()
    del request["credential"]
    with pytest.raises(RequestValidationError):
        SchemaValidator().validate_request(request)


def test_split_emails_trims_and_lowercases():
    valid, invalid = split_emails([" A@Example.com", "b@example", "c d@example.com", "e@example.org"])
    assert valid == ["a@example.com", "e@example.org"]
    assert invalid == ["b@example", "c d@example.com"]


def test_ordered_unique_keeps_first_occurrence():
    assert ordered_unique(["p2", "p1", "p2", "p3", "p1"]) == ["p2", "p1", "p3"]


def test_normalize_request_deduplicates():
    emails, projects = SchemaValidator().normalize_request(
        _request(user_emails=["a@example.com", "A@example.com"], project_ids=["p1", " p1 ", "p2"])
    )
    assert emails == ["a@example.com"]
    assert projects == ["p1", "p2"]


def test_normalize_request_reports_every_invalid_email():
    with pytest.raises(RequestValidationError) as excinfo:
        SchemaValidator().normalize_request(_request(user_emails=["x", "a@example.com", "y@z"]))
    assert excinfo.value.invalid_emails == ["x", "y@z"]


def test_normalize_request_rejects_blank_project_ids():
    with pytest.raises(RequestValidationError):
        SchemaValidator().normalize_request(_request(project_ids=["   "]))


def test_preview_schema_makes_role_optional():
    request = _request()
    del request["role"]

    emails, projects = SchemaValidator().normalize_request(request, PREVIEW_SCHEMA)

    assert emails == ["a@example.com"]
    assert projects == ["p1"]
    with pytest.raises(RequestValidationError):
        SchemaValidator().normalize_request(request)
