"""Pydantic schemas for each onboarding step's submitted data.

One model per step.  Validation runs with a context of
``{"today": date}`` so date rules are deterministic in tests.
"""

import re
from datetime import date
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
)

from medstint.onboarding.types import Role

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_REGEX = re.compile(r"^\+?[0-9][0-9 ()\-]{6,19}$")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def _today(info: ValidationInfo) -> date:
    ctx = info.context or {}
    return ctx.get("today") or date.today()


def _check_email(value: str) -> str:
    if not EMAIL_REGEX.match(value):
        raise ValueError("Please enter a valid email address")
    return value.lower()


def _check_phone(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    if not PHONE_REGEX.match(value):
        raise ValueError("Please enter a valid phone number")
    return value


Email = Annotated[NonEmptyStr, AfterValidator(_check_email)]
Phone = Annotated[str | None, AfterValidator(_check_phone)]


# ── Welcome / role ──────────────────────────────────────────

class WelcomeData(BaseModel):
    """Nothing to collect; submitting acknowledges the introduction."""


class RoleSelectionData(BaseModel):
    role: Role

    @field_validator("role")
    @classmethod
    def _not_self_provisioned(cls, v: Role):
        if v is Role.PLATFORM_ADMIN:
            raise ValueError("Platform administrator accounts are provisioned by invitation")
        return v


# ── Profile (all roles) ─────────────────────────────────────

class BasicInfoData(BaseModel):
    first_name: NonEmptyStr
    last_name: NonEmptyStr
    date_of_birth: date | None = None

    @field_validator("date_of_birth")
    @classmethod
    def _born_in_past(cls, v: date | None, info: ValidationInfo):
        if v is not None and v >= _today(info):
            raise ValueError("Date of birth must be in the past")
        return v


class ContactInfoData(BaseModel):
    email: Email
    phone: Phone = None
    address: str | None = None


# ── Student path ────────────────────────────────────────────

class SchoolSelectionData(BaseModel):
    school_id: NonEmptyStr


class ProgramSelectionData(BaseModel):
    program_id: NonEmptyStr


class EnrollmentConfirmationData(BaseModel):
    student_id: NonEmptyStr
    enrollment_date: date
    expected_graduation: date | None = None

    @field_validator("enrollment_date")
    @classmethod
    def _not_before_today(cls, v: date, info: ValidationInfo):
        if v < _today(info):
            raise ValueError("Enrollment date cannot be in the past")
        return v

    @field_validator("expected_graduation")
    @classmethod
    def _after_enrollment(cls, v: date | None, info: ValidationInfo):
        enrolled = info.data.get("enrollment_date")
        if v is not None and enrolled is not None and v <= enrolled:
            raise ValueError("Expected graduation must be after the enrollment date")
        return v


class SubscriptionData(BaseModel):
    """School-paid seat, or an individual plan paid through checkout."""
    plan: Literal["school-seat", "individual"]
    checkout_reference: str | None = Field(default=None, validate_default=True)

    @field_validator("checkout_reference")
    @classmethod
    def _individual_needs_checkout(cls, v: str | None, info: ValidationInfo):
        if info.data.get("plan") == "individual" and not (v or "").strip():
            raise ValueError("A completed checkout is required for an individual plan")
        return v


# ── Institution admin path ──────────────────────────────────

class SchoolSetupData(BaseModel):
    school_name: NonEmptyStr
    address: NonEmptyStr
    contact_email: Email
    phone: Phone = None


class ProgramInput(BaseModel):
    name: NonEmptyStr
    program_type: str | None = None
    duration_months: int = Field(default=12, ge=1, le=96)
    class_year: int | None = None


class ProgramSetupData(BaseModel):
    """At least one program is required."""
    programs: list[ProgramInput]

    @field_validator("programs")
    @classmethod
    def _at_least_one(cls, v: list[ProgramInput]):
        if not v:
            raise ValueError("At least one program is required")
        return v


# ── Preceptor / supervisor path ─────────────────────────────

class AffiliationSetupData(BaseModel):
    school_id: NonEmptyStr
    department: NonEmptyStr
    title: str | None = None
