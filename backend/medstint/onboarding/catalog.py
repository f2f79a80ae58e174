"""Step catalog: every onboarding step and the per-role orderings.

Branching is data: ROLE_STEPS maps a role to its ordered step list and
each Step names the steps it depends on.  Nothing here touches storage;
all functions read an OnboardingSession and answer a question about it.
"""

from dataclasses import dataclass
from typing import Callable

from medstint.onboarding.types import OnboardingSession, Role, StepId


@dataclass(frozen=True)
class Step:
    id: StepId
    title: str
    description: str
    is_required: bool = True
    estimated_minutes: int = 1
    required_fields: tuple[str, ...] = ()
    depends_on: tuple[StepId, ...] = ()
    skip_if: Callable[[OnboardingSession], bool] | None = None

    def skippable(self, session: OnboardingSession) -> bool:
        """True when the skip predicate holds for the current state."""
        return self.skip_if is not None and bool(self.skip_if(session))


def _has_preset(key: str) -> Callable[[OnboardingSession], bool]:
    return lambda session: bool(session.context.get(key))


STEPS: dict[StepId, Step] = {
    s.id: s
    for s in (
        Step(
            StepId.WELCOME,
            "Welcome",
            "Introduction to the clinical education portal",
            estimated_minutes=1,
        ),
        Step(
            StepId.ROLE_SELECTION,
            "Choose your role",
            "Tell us how you will use the portal",
            required_fields=("role",),
            depends_on=(StepId.WELCOME,),
            skip_if=_has_preset("role"),
        ),
        Step(
            StepId.BASIC_INFO,
            "Basic information",
            "Your name and date of birth",
            estimated_minutes=3,
            required_fields=("first_name", "last_name"),
            depends_on=(StepId.ROLE_SELECTION,),
        ),
        Step(
            StepId.CONTACT_INFO,
            "Contact information",
            "How your school and preceptors can reach you",
            estimated_minutes=2,
            required_fields=("email",),
            depends_on=(StepId.BASIC_INFO,),
        ),
        Step(
            StepId.SCHOOL_SELECTION,
            "Select your school",
            "Choose the school you are enrolled at",
            estimated_minutes=2,
            required_fields=("school_id",),
            depends_on=(StepId.CONTACT_INFO,),
            skip_if=_has_preset("school_id"),
        ),
        Step(
            StepId.PROGRAM_SELECTION,
            "Select your program",
            "Choose the program you are enrolled in",
            estimated_minutes=2,
            required_fields=("program_id",),
            depends_on=(StepId.SCHOOL_SELECTION,),
            skip_if=_has_preset("program_id"),
        ),
        Step(
            StepId.ENROLLMENT_CONFIRMATION,
            "Confirm enrollment",
            "Student id, enrollment date and expected graduation",
            estimated_minutes=3,
            required_fields=("student_id", "enrollment_date"),
            depends_on=(StepId.SCHOOL_SELECTION, StepId.PROGRAM_SELECTION),
        ),
        Step(
            StepId.SUBSCRIPTION,
            "Subscription",
            "Use a school-paid seat or choose an individual plan",
            estimated_minutes=3,
            required_fields=("plan",),
            depends_on=(StepId.ENROLLMENT_CONFIRMATION,),
        ),
        Step(
            StepId.SCHOOL_SETUP,
            "Set up your school",
            "Register the institution you administer",
            estimated_minutes=5,
            required_fields=("school_name", "address", "contact_email"),
            depends_on=(StepId.CONTACT_INFO,),
        ),
        Step(
            StepId.PROGRAM_SETUP,
            "Add programs",
            "Create the programs your students enroll in",
            is_required=False,
            estimated_minutes=5,
            required_fields=("programs",),
            depends_on=(StepId.SCHOOL_SETUP,),
        ),
        Step(
            StepId.AFFILIATION_SETUP,
            "Clinical affiliation",
            "The school and department you supervise for",
            estimated_minutes=3,
            required_fields=("school_id", "department"),
            depends_on=(StepId.CONTACT_INFO,),
        ),
        Step(
            StepId.COMPLETE,
            "All set",
            "Onboarding complete",
            estimated_minutes=0,
        ),
    )
}

_PREAMBLE = (StepId.WELCOME, StepId.ROLE_SELECTION)
_PROFILE = (StepId.BASIC_INFO, StepId.CONTACT_INFO)
_CLINICAL = _PREAMBLE + _PROFILE + (StepId.AFFILIATION_SETUP, StepId.COMPLETE)

ROLE_STEPS: dict[Role | None, tuple[StepId, ...]] = {
    None: _PREAMBLE,
    Role.STUDENT: _PREAMBLE + _PROFILE + (
        StepId.SCHOOL_SELECTION,
        StepId.PROGRAM_SELECTION,
        StepId.ENROLLMENT_CONFIRMATION,
        StepId.SUBSCRIPTION,
        StepId.COMPLETE,
    ),
    Role.INSTITUTION_ADMIN: _PREAMBLE + _PROFILE + (
        StepId.SCHOOL_SETUP,
        StepId.PROGRAM_SETUP,
        StepId.COMPLETE,
    ),
    Role.CLINICAL_PRECEPTOR: _CLINICAL,
    Role.CLINICAL_SUPERVISOR: _CLINICAL,
    Role.PLATFORM_ADMIN: _PREAMBLE + (StepId.COMPLETE,),
}

ROLE_DASHBOARDS: dict[Role, str] = {
    Role.PLATFORM_ADMIN: "/dashboard/admin",
    Role.INSTITUTION_ADMIN: "/dashboard/school-admin",
    Role.CLINICAL_PRECEPTOR: "/dashboard/clinical-preceptor",
    Role.CLINICAL_SUPERVISOR: "/dashboard/clinical-supervisor",
    Role.STUDENT: "/dashboard/student",
}


def get_step(step_id: StepId) -> Step:
    return STEPS[step_id]


def requirements_for(role: Role | None) -> list[StepId]:
    """Ordered step ids for a role; the preamble while no role is chosen."""
    return list(ROLE_STEPS[role])


def dashboard_for(role: Role | None) -> str:
    return ROLE_DASHBOARDS.get(role, "/dashboard")


def is_done(step_id: StepId, session: OnboardingSession) -> bool:
    """Completed, explicitly skipped, or skippable by its predicate."""
    return (
        step_id in session.completed_steps
        or step_id in session.skipped_steps
        or STEPS[step_id].skippable(session)
    )


def next_step(session: OnboardingSession) -> StepId:
    """First step of the role's sequence that is not done.

    Skippable steps collapse transitively because every candidate is tested
    against the same predicate.  Returns COMPLETE once nothing remains.
    """
    for step_id in requirements_for(session.role):
        if step_id is StepId.COMPLETE:
            break
        if not is_done(step_id, session):
            return step_id
    return StepId.COMPLETE


def is_reachable(step_id: StepId, session: OnboardingSession) -> bool:
    return step_id in ROLE_STEPS[session.role]


def unmet_dependencies(step_id: StepId, session: OnboardingSession) -> list[StepId]:
    return [dep for dep in STEPS[step_id].depends_on if not is_done(dep, session)]


def missing_for(session: OnboardingSession) -> list[StepId]:
    """Required steps still outstanding before the session can complete."""
    if session.role is None:
        return [s for s in _PREAMBLE if not is_done(s, session)]
    return [
        step_id
        for step_id in requirements_for(session.role)
        if step_id is not StepId.COMPLETE
        and STEPS[step_id].is_required
        and not is_done(step_id, session)
    ]


def progress(session: OnboardingSession) -> int:
    """Completion percentage of the role's sequence, 0-100."""
    if StepId.COMPLETE in session.completed_steps:
        return 100
    steps = [s for s in requirements_for(session.role) if s is not StepId.COMPLETE]
    if session.role is None:
        # No role yet: measure against the longest flow
        steps = list(ROLE_STEPS[Role.STUDENT][:-1])
    done = sum(1 for s in steps if is_done(s, session))
    return int(done * 100 / len(steps))
