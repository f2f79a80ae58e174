"""Tests for the SQL principal recorder and seat assigner."""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from medstint.middleware.exceptions import CollaboratorError
from medstint.models.school import Program, School, SeatAssignment
from medstint.models.user import User
from medstint.onboarding.collaborators import (
    CompletionPlan,
    SqlPrincipalRecorder,
    SqlSeatAssigner,
)
from medstint.onboarding.finalizer import CompletionFinalizer
from medstint.onboarding.types import Role, SessionStatus, StepId
from conftest import make_ready_session


@pytest_asyncio.fixture
async def school(sql_sessionmaker) -> School:
    async with sql_sessionmaker() as db:
        school = School(id="school-1", name="Northwind Nursing", seats_total=1, seats_used=0)
        db.add(school)
        db.add(Program(id="program-1", school_id="school-1", name="BSN"))
        db.add(School(id="school-2", name="Southwind"))
        db.add(Program(id="program-2", school_id="school-2", name="ADN"))
        await db.commit()
        return school


def student_plan(principal_id="student-1", **overrides) -> CompletionPlan:
    values = dict(
        session_id="sess-1",
        principal_id=principal_id,
        role=Role.STUDENT,
        email="ada@example.edu",
        first_name="Ada",
        last_name="Lovelace",
        school_id="school-1",
        program_id="program-1",
        student_id="S-1001",
        enrollment_date=date(2026, 9, 1),
        plan="school-seat",
    )
    values.update(overrides)
    return CompletionPlan(**values)


@pytest.mark.integration
@pytest.mark.asyncio
class TestPrincipalRecorder:
    async def test_student_recorded(self, sql_sessionmaker, school):
        await SqlPrincipalRecorder(sql_sessionmaker).record(student_plan())

        async with sql_sessionmaker() as db:
            user = await db.get(User, "student-1")
        assert user.role == "student"
        assert user.school_id == "school-1"
        assert user.program_id == "program-1"
        assert user.student_id == "S-1001"
        assert user.onboarding_completed is True
        assert user.onboarding_completed_at is not None

    async def test_record_is_idempotent(self, sql_sessionmaker, school):
        recorder = SqlPrincipalRecorder(sql_sessionmaker)
        await recorder.record(student_plan())
        await recorder.record(student_plan())

        async with sql_sessionmaker() as db:
            count = await db.scalar(select(func.count()).select_from(User))
        assert count == 1

    async def test_program_must_belong_to_school(self, sql_sessionmaker, school):
        with pytest.raises(CollaboratorError) as exc_info:
            await SqlPrincipalRecorder(sql_sessionmaker).record(student_plan(program_id="program-2"))
        assert exc_info.value.collaborator == "principal_recorder"

        async with sql_sessionmaker() as db:
            assert await db.get(User, "student-1") is None

    async def test_unknown_school(self, sql_sessionmaker, school):
        with pytest.raises(CollaboratorError):
            await SqlPrincipalRecorder(sql_sessionmaker).record(student_plan(school_id="nope"))

    async def test_institution_admin_creates_school_once(self, sql_sessionmaker):
        plan = CompletionPlan(
            session_id="sess-9",
            principal_id="admin-1",
            role=Role.INSTITUTION_ADMIN,
            email="dean@northwind.edu",
            school={
                "school_name": "Eastwind College",
                "address": "9 Harbor Rd",
                "contact_email": "office@eastwind.edu",
                "phone": None,
            },
            programs=[
                {"name": "BSN", "program_type": "nursing", "duration_months": 36, "class_year": 2028},
                {"name": "PA", "program_type": None, "duration_months": 24, "class_year": None},
            ],
        )
        recorder = SqlPrincipalRecorder(sql_sessionmaker)
        await recorder.record(plan)
        await recorder.record(plan)

        async with sql_sessionmaker() as db:
            schools = (await db.execute(select(School).where(School.admin_id == "admin-1"))).scalars().all()
            programs = (await db.execute(select(Program.name).order_by(Program.name))).scalars().all()
            user = await db.get(User, "admin-1")
        assert len(schools) == 1
        assert schools[0].name == "Eastwind College"
        assert programs == ["BSN", "PA"]
        assert user.school_id == schools[0].id
        assert user.role == "institution-admin"


@pytest.mark.integration
@pytest.mark.asyncio
class TestSeatAssigner:
    async def test_seat_drawn_once(self, sql_sessionmaker, school):
        assigner = SqlSeatAssigner(sql_sessionmaker)
        await assigner.assign(student_plan())
        await assigner.assign(student_plan())

        async with sql_sessionmaker() as db:
            stored = await db.get(School, "school-1")
            seats = await db.scalar(select(func.count()).select_from(SeatAssignment))
        assert stored.seats_used == 1
        assert seats == 1

    async def test_pool_exhausted(self, sql_sessionmaker, school):
        assigner = SqlSeatAssigner(sql_sessionmaker)
        await assigner.assign(student_plan())

        with pytest.raises(CollaboratorError) as exc_info:
            await assigner.assign(student_plan(principal_id="student-2"))
        assert exc_info.value.collaborator == "seat_assigner"

    async def test_individual_plan_needs_no_seat(self, sql_sessionmaker, school):
        await SqlSeatAssigner(sql_sessionmaker).assign(
            student_plan(school_id="school-2", plan="individual", checkout_reference="chk_123")
        )
        async with sql_sessionmaker() as db:
            assert await db.scalar(select(func.count()).select_from(SeatAssignment)) == 0

    async def test_non_students_skip(self, sql_sessionmaker, school):
        await SqlSeatAssigner(sql_sessionmaker).assign(
            student_plan(role=Role.CLINICAL_PRECEPTOR, school_id=None)
        )

    async def test_unknown_school_reported(self, sql_sessionmaker, school):
        with pytest.raises(CollaboratorError) as exc_info:
            await SqlSeatAssigner(sql_sessionmaker).assign(student_plan(school_id="nope"))
        assert exc_info.value.message == "Selected school does not exist"

    async def test_foreign_program_draws_no_seat(self, sql_sessionmaker, school):
        with pytest.raises(CollaboratorError) as exc_info:
            await SqlSeatAssigner(sql_sessionmaker).assign(student_plan(program_id="program-2"))
        assert exc_info.value.collaborator == "seat_assigner"

        async with sql_sessionmaker() as db:
            stored = await db.get(School, "school-1")
            seats = await db.scalar(select(func.count()).select_from(SeatAssignment))
        assert stored.seats_used == 0
        assert seats == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestFinalizeWithSqlCollaborators:
    async def test_rejected_selection_leaves_no_side_effects(
        self, sql_sessionmaker, school, store, emitter, locks
    ):
        finalizer = CompletionFinalizer(
            store,
            emitter,
            SqlPrincipalRecorder(sql_sessionmaker),
            SqlSeatAssigner(sql_sessionmaker),
            locks,
        )
        session = await make_ready_session(store)
        session.form_data[StepId.PROGRAM_SELECTION] = {"program_id": "program-2"}
        session = await store.save(session)

        with pytest.raises(CollaboratorError):
            await finalizer.finalize(session)

        async with sql_sessionmaker() as db:
            stored = await db.get(School, "school-1")
            seats = await db.scalar(select(func.count()).select_from(SeatAssignment))
            user = await db.get(User, "student-1")
        assert stored.seats_used == 0
        assert seats == 0
        assert user is None
        assert (await store.load(session.session_id)).status is SessionStatus.ACTIVE

    async def test_completes_with_one_seat(self, sql_sessionmaker, school, store, emitter, locks):
        finalizer = CompletionFinalizer(
            store,
            emitter,
            SqlPrincipalRecorder(sql_sessionmaker),
            SqlSeatAssigner(sql_sessionmaker),
            locks,
        )
        session = await make_ready_session(store)

        completed = await finalizer.finalize(session, email="ada@example.edu")

        assert completed.status is SessionStatus.COMPLETED
        async with sql_sessionmaker() as db:
            stored = await db.get(School, "school-1")
            user = await db.get(User, "student-1")
        assert stored.seats_used == 1
        assert user.onboarding_completed is True
