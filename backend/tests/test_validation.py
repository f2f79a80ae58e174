"""Tests for per-step validation and field error messages."""

from datetime import date

import pytest
from pydantic import BaseModel, model_validator

from medstint.onboarding import validation
from medstint.onboarding.types import StepId
from medstint.onboarding.validation import FORM_ERROR_KEY, validate

TODAY = date(2026, 3, 2)


class ExplodingData(BaseModel):
    @model_validator(mode="before")
    @classmethod
    def _explode(cls, data):
        raise LookupError("lookup table missing")


def errors_for(step, data):
    result = validate(step, data, today=TODAY)
    assert not result.ok
    return result.field_errors


@pytest.mark.unit
class TestProfileSteps:
    def test_every_failing_field_reported(self):
        """All failing fields come back at once, not just the first."""
        errors = errors_for(StepId.BASIC_INFO, {})
        assert errors == {
            "first_name": "First name is required",
            "last_name": "Last name is required",
        }

    def test_three_failing_fields_reported(self):
        errors = errors_for(
            StepId.SCHOOL_SETUP, {"school_name": "", "contact_email": "office-at-northwind"}
        )
        assert errors == {
            "school_name": "School name is required",
            "address": "Address is required",
            "contact_email": "Please enter a valid email address",
        }

    def test_whitespace_only_name_is_missing(self):
        errors = errors_for(StepId.BASIC_INFO, {"first_name": "   ", "last_name": "Lovelace"})
        assert errors == {"first_name": "First name is required"}

    def test_birth_date_must_be_past(self):
        errors = errors_for(
            StepId.BASIC_INFO,
            {"first_name": "Ada", "last_name": "Lovelace", "date_of_birth": "2026-03-02"},
        )
        assert errors["date_of_birth"] == "Date of birth must be in the past"

    def test_invalid_email(self):
        errors = errors_for(StepId.CONTACT_INFO, {"email": "not-an-email"})
        assert errors == {"email": "Please enter a valid email address"}

    def test_invalid_phone(self):
        errors = errors_for(StepId.CONTACT_INFO, {"email": "ada@example.edu", "phone": "abc"})
        assert errors == {"phone": "Please enter a valid phone number"}

    def test_valid_contact_normalized(self):
        result = validate(
            StepId.CONTACT_INFO, {"email": "Ada@Example.EDU", "phone": ""}, today=TODAY
        )
        assert result.ok
        assert result.record == {"email": "ada@example.edu", "phone": None, "address": None}


@pytest.mark.unit
class TestRoleSelection:
    def test_unknown_role(self):
        errors = errors_for(StepId.ROLE_SELECTION, {"role": "astronaut"})
        assert errors["role"].startswith("Role:")

    def test_platform_admin_not_self_selectable(self):
        errors = errors_for(StepId.ROLE_SELECTION, {"role": "platform-admin"})
        assert "invitation" in errors["role"]

    def test_valid_role_record(self):
        result = validate(StepId.ROLE_SELECTION, {"role": "institution-admin"}, today=TODAY)
        assert result.record == {"role": "institution-admin"}


@pytest.mark.unit
class TestEnrollment:
    def test_enrollment_in_past(self):
        errors = errors_for(
            StepId.ENROLLMENT_CONFIRMATION,
            {"student_id": "S-1", "enrollment_date": "2026-03-01"},
        )
        assert errors == {"enrollment_date": "Enrollment date cannot be in the past"}

    def test_enrollment_today_allowed(self):
        result = validate(
            StepId.ENROLLMENT_CONFIRMATION,
            {"student_id": "S-1", "enrollment_date": "2026-03-02"},
            today=TODAY,
        )
        assert result.ok
        assert result.record["enrollment_date"] == "2026-03-02"

    def test_graduation_before_enrollment(self):
        errors = errors_for(
            StepId.ENROLLMENT_CONFIRMATION,
            {"student_id": "S-1", "enrollment_date": "2026-09-01", "expected_graduation": "2026-09-01"},
        )
        assert errors == {"expected_graduation": "Expected graduation must be after the enrollment date"}

    def test_impossible_calendar_date(self):
        errors = errors_for(
            StepId.ENROLLMENT_CONFIRMATION,
            {"student_id": "S-1", "enrollment_date": "2026-02-30"},
        )
        assert errors == {"enrollment_date": "Enrollment date must be a valid calendar date"}


@pytest.mark.unit
class TestSubscriptionAndSetup:
    def test_individual_plan_needs_checkout(self):
        errors = errors_for(StepId.SUBSCRIPTION, {"plan": "individual"})
        assert errors == {"checkout_reference": "A completed checkout is required for an individual plan"}

    def test_school_seat_needs_no_checkout(self):
        assert validate(StepId.SUBSCRIPTION, {"plan": "school-seat"}, today=TODAY).ok

    def test_unknown_plan(self):
        errors = errors_for(StepId.SUBSCRIPTION, {"plan": "free"})
        assert errors["plan"].startswith("Plan:")

    def test_program_setup_needs_a_program(self):
        errors = errors_for(StepId.PROGRAM_SETUP, {"programs": []})
        assert errors == {"programs": "At least one program is required"}

    def test_nested_program_errors_keyed_by_path(self):
        errors = errors_for(StepId.PROGRAM_SETUP, {"programs": [{"name": ""}]})
        assert errors == {"programs.0.name": "Name is required"}

    def test_school_setup_email_checked(self):
        errors = errors_for(
            StepId.SCHOOL_SETUP,
            {"school_name": "Northwind", "address": "1 Main St", "contact_email": "nope"},
        )
        assert errors == {"contact_email": "Please enter a valid email address"}


@pytest.mark.unit
class TestMalformedInput:
    def test_non_object_data(self):
        assert errors_for(StepId.BASIC_INFO, ["Ada"]) == {FORM_ERROR_KEY: "Step data must be an object"}

    def test_complete_accepts_no_data(self):
        assert FORM_ERROR_KEY in errors_for(StepId.COMPLETE, {})

    def test_welcome_accepts_empty(self):
        result = validate(StepId.WELCOME, {}, today=TODAY)
        assert result.ok
        assert result.record == {}


@pytest.mark.unit
class TestBrokenValidator:
    def test_validator_exception_is_a_validation_failure(self, monkeypatch):
        monkeypatch.setitem(validation.STEP_SCHEMAS, StepId.WELCOME, ExplodingData)

        result = validate(StepId.WELCOME, {}, today=TODAY)

        assert result.ok is False
        assert result.field_errors == {FORM_ERROR_KEY: "Submitted data could not be validated"}
