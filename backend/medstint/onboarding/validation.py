"""Validation pipeline: step id + raw data → validated record or field errors.

Pure and synchronous.  Every violation is reported at once, keyed by the
dotted field path ("__all__" for errors not tied to one field).
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from pydantic import BaseModel, ValidationError

from medstint.onboarding.types import StepId
from medstint.schemas.steps import (
    AffiliationSetupData,
    BasicInfoData,
    ContactInfoData,
    EnrollmentConfirmationData,
    ProgramSelectionData,
    ProgramSetupData,
    RoleSelectionData,
    SchoolSelectionData,
    SchoolSetupData,
    SubscriptionData,
    WelcomeData,
)

logger = logging.getLogger(__name__)

FORM_ERROR_KEY = "__all__"

STEP_SCHEMAS: dict[StepId, type[BaseModel]] = {
    StepId.WELCOME: WelcomeData,
    StepId.ROLE_SELECTION: RoleSelectionData,
    StepId.BASIC_INFO: BasicInfoData,
    StepId.CONTACT_INFO: ContactInfoData,
    StepId.SCHOOL_SELECTION: SchoolSelectionData,
    StepId.PROGRAM_SELECTION: ProgramSelectionData,
    StepId.ENROLLMENT_CONFIRMATION: EnrollmentConfirmationData,
    StepId.SUBSCRIPTION: SubscriptionData,
    StepId.SCHOOL_SETUP: SchoolSetupData,
    StepId.PROGRAM_SETUP: ProgramSetupData,
    StepId.AFFILIATION_SETUP: AffiliationSetupData,
}


@dataclass
class ValidationResult:
    ok: bool
    record: dict | None = None
    field_errors: dict[str, str] = field(default_factory=dict)


def _label(loc: tuple) -> str:
    names = [p for p in loc if isinstance(p, str)]
    name = names[-1] if names else "value"
    return name.replace("_", " ").capitalize()


def _message(error: dict) -> str:
    kind = error["type"]
    label = _label(error["loc"])
    if kind in ("missing", "string_too_short"):
        return f"{label} is required"
    if kind.startswith("date_"):
        return f"{label} must be a valid calendar date"
    if kind == "value_error":
        return str(error.get("ctx", {}).get("error", error["msg"]))
    if kind in ("enum", "literal_error"):
        return f"{label}: {error['msg']}"
    return error["msg"]


def field_errors_from(exc: ValidationError) -> dict[str, str]:
    """Collapse pydantic errors into {field_path: message}, first error wins."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        key = ".".join(str(p) for p in error["loc"]) or FORM_ERROR_KEY
        errors.setdefault(key, _message(error))
    return errors


def validate(step: StepId, data, today: date | None = None) -> ValidationResult:
    schema = STEP_SCHEMAS.get(step)
    if schema is None:
        return ValidationResult(
            ok=False, field_errors={FORM_ERROR_KEY: f"Step '{step.value}' does not accept data"}
        )
    if not isinstance(data, dict):
        return ValidationResult(
            ok=False, field_errors={FORM_ERROR_KEY: "Step data must be an object"}
        )

    try:
        model = schema.model_validate(data, context={"today": today or date.today()})
    except ValidationError as exc:
        return ValidationResult(ok=False, field_errors=field_errors_from(exc))
    except Exception as exc:
        # A broken validator must read as a failed validation, never as a 500
        logger.warning("Validator for step %s raised: %s", step.value, exc)
        return ValidationResult(
            ok=False, field_errors={FORM_ERROR_KEY: "Submitted data could not be validated"}
        )

    return ValidationResult(ok=True, record=model.model_dump(mode="json"))
