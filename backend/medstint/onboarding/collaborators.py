"""Collaborators called by the completion finalizer.

  PrincipalRecorder → persists role, school, program and the onboarded
                      flag on the principal's ``users`` row; creates the
                      school and its programs for institution admins
  SeatAssigner      → draws a school-paid seat for a student, or accepts
                      an individual plan

Both must be idempotent: a failed completion is retried as a whole.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from medstint.middleware.exceptions import CollaboratorError
from medstint.models.school import Program, School, SeatAssignment
from medstint.models.user import User
from medstint.onboarding.types import OnboardingSession, Role, StepId

logger = logging.getLogger(__name__)


@dataclass
class CompletionPlan:
    """Everything the collaborators need, flattened out of the session."""
    session_id: str
    principal_id: str
    role: Role
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    school_id: str | None = None
    program_id: str | None = None
    student_id: str | None = None
    enrollment_date: date | None = None
    plan: str | None = None
    checkout_reference: str | None = None
    school: dict | None = None
    programs: list[dict] = field(default_factory=list)
    department: str | None = None

    @classmethod
    def from_session(cls, session: OnboardingSession, email: str | None = None) -> "CompletionPlan":
        data = session.form_data
        basic = data.get(StepId.BASIC_INFO, {})
        contact = data.get(StepId.CONTACT_INFO, {})
        enrollment = data.get(StepId.ENROLLMENT_CONFIRMATION, {})
        subscription = data.get(StepId.SUBSCRIPTION, {})
        affiliation = data.get(StepId.AFFILIATION_SETUP, {})

        school_id = (
            data.get(StepId.SCHOOL_SELECTION, {}).get("school_id")
            or affiliation.get("school_id")
            or session.context.get("school_id")
        )
        program_id = (
            data.get(StepId.PROGRAM_SELECTION, {}).get("program_id")
            or session.context.get("program_id")
        )
        enrolled = enrollment.get("enrollment_date")

        return cls(
            session_id=session.session_id,
            principal_id=session.principal_id,
            role=session.role,
            email=contact.get("email") or email,
            first_name=basic.get("first_name"),
            last_name=basic.get("last_name"),
            phone=contact.get("phone"),
            school_id=school_id,
            program_id=program_id,
            student_id=enrollment.get("student_id"),
            enrollment_date=date.fromisoformat(enrolled) if enrolled else None,
            plan=subscription.get("plan"),
            checkout_reference=subscription.get("checkout_reference"),
            school=data.get(StepId.SCHOOL_SETUP),
            programs=list(data.get(StepId.PROGRAM_SETUP, {}).get("programs", [])),
            department=affiliation.get("department"),
        )


class PrincipalRecorder(ABC):
    @abstractmethod
    async def record(self, plan: CompletionPlan) -> None:
        ...


class SeatAssigner(ABC):
    @abstractmethod
    async def assign(self, plan: CompletionPlan) -> None:
        ...


# ── SQL implementations ─────────────────────────────────────

async def check_selection(db: AsyncSession, plan: CompletionPlan, collaborator: str) -> None:
    """The selected school must exist and be active, and a selected program
    must belong to it."""
    school = await db.get(School, plan.school_id)
    if school is None or not school.is_active:
        raise CollaboratorError(
            "Selected school does not exist",
            collaborator=collaborator,
            session_id=plan.session_id,
        )
    if plan.program_id:
        program = await db.get(Program, plan.program_id)
        if program is None or program.school_id != plan.school_id:
            raise CollaboratorError(
                "Selected program does not belong to the selected school",
                collaborator=collaborator,
                session_id=plan.session_id,
            )


class SqlPrincipalRecorder(PrincipalRecorder):
    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def record(self, plan: CompletionPlan) -> None:
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    await self._record(db, plan)
        except SQLAlchemyError as exc:
            logger.error("Principal recorder failed for %s: %s", plan.principal_id, exc)
            raise CollaboratorError(
                "Could not update your account; please retry",
                collaborator="principal_recorder",
                session_id=plan.session_id,
            ) from exc

    async def _record(self, db: AsyncSession, plan: CompletionPlan) -> None:
        school_id = plan.school_id
        program_id = plan.program_id

        if plan.role is Role.INSTITUTION_ADMIN:
            school_id = await self._ensure_school(db, plan)
            program_id = None
        elif school_id:
            await check_selection(db, plan, collaborator="principal_recorder")

        user = await db.get(User, plan.principal_id)
        if user is None:
            user = User(id=plan.principal_id)
            db.add(user)

        user.email = plan.email or user.email
        user.first_name = plan.first_name or user.first_name
        user.last_name = plan.last_name or user.last_name
        user.phone = plan.phone or user.phone
        user.role = plan.role.value
        user.school_id = school_id
        user.program_id = program_id
        if plan.role is Role.STUDENT:
            user.student_id = plan.student_id
            if plan.enrollment_date:
                user.enrollment_date = datetime.combine(
                    plan.enrollment_date, datetime.min.time(), tzinfo=timezone.utc
                )
        if not user.onboarding_completed:
            user.onboarding_completed = True
            user.onboarding_completed_at = datetime.now(timezone.utc)

        logger.info(
            "Recorded onboarding for %s as %s (school=%s)",
            plan.principal_id, plan.role.value, school_id,
        )

    async def _ensure_school(self, db: AsyncSession, plan: CompletionPlan) -> str:
        """Reuse the admin's school from an earlier attempt, else create it."""
        result = await db.execute(
            select(School).where(School.admin_id == plan.principal_id).limit(1)
        )
        school = result.scalar_one_or_none()
        if school is None:
            details = plan.school or {}
            school = School(
                name=details.get("school_name"),
                address=details.get("address"),
                email=details.get("contact_email"),
                phone=details.get("phone"),
                admin_id=plan.principal_id,
            )
            db.add(school)
            await db.flush()

        existing = await db.execute(select(Program.name).where(Program.school_id == school.id))
        names = {row[0] for row in existing.all()}
        for p in plan.programs:
            if p["name"] in names:
                continue
            db.add(
                Program(
                    school_id=school.id,
                    name=p["name"],
                    program_type=p.get("program_type"),
                    duration_months=p.get("duration_months") or 12,
                    class_year=p.get("class_year"),
                )
            )
        return school.id


class SqlSeatAssigner(SeatAssigner):
    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def assign(self, plan: CompletionPlan) -> None:
        if plan.role is not Role.STUDENT:
            return
        if plan.plan == "individual":
            logger.info(
                "Individual plan for %s (checkout %s)",
                plan.principal_id, plan.checkout_reference,
            )
            return
        if not plan.school_id:
            raise CollaboratorError(
                "A school is required for a school-paid seat",
                collaborator="seat_assigner",
                session_id=plan.session_id,
            )

        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    await self._assign_seat(db, plan)
        except SQLAlchemyError as exc:
            logger.error("Seat assignment failed for %s: %s", plan.principal_id, exc)
            raise CollaboratorError(
                "Could not assign a seat; please retry",
                collaborator="seat_assigner",
                session_id=plan.session_id,
            ) from exc

    async def _assign_seat(self, db: AsyncSession, plan: CompletionPlan) -> None:
        existing = await db.execute(
            select(SeatAssignment.id).where(
                SeatAssignment.school_id == plan.school_id,
                SeatAssignment.principal_id == plan.principal_id,
            )
        )
        if existing.scalar_one_or_none():
            return

        # Checked before drawing so a rejected selection never holds a seat
        await check_selection(db, plan, collaborator="seat_assigner")

        # Conditional increment: concurrent students cannot oversell the pool
        result = await db.execute(
            update(School)
            .where(School.id == plan.school_id, School.seats_used < School.seats_total)
            .values(seats_used=School.seats_used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise CollaboratorError(
                "No school-paid seats are available; choose an individual plan",
                collaborator="seat_assigner",
                session_id=plan.session_id,
            )
        db.add(SeatAssignment(school_id=plan.school_id, principal_id=plan.principal_id))
        logger.info("Assigned seat at school %s to %s", plan.school_id, plan.principal_id)
