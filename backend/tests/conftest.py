# backend/tests/conftest.py
"""
Pytest configuration for the studio booking engine.

Every test gets a fresh in-memory SQLite database. Builders create the
minimum rows a scenario needs; services are wired exactly as the API
wires them.
"""

from datetime import date, datetime, timedelta, timezone
import os
import sys
from typing import Callable, Iterator, Optional

# Set before any studio_booking import so the module-level engine is in-memory
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("METRICS_ENABLED", "true")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from fastapi.testclient import TestClient
import pytest
from sqlalchemy.orm import Session, sessionmaker

from studio_booking import models  # noqa: F401
from studio_booking.api.dependencies import get_db
from studio_booking.core.config import settings
from studio_booking.core.timezone_utils import get_studio_today
from studio_booking.database import Base, build_engine
from studio_booking.main import app
from studio_booking.models import (
    ClassSession,
    Client,
    Course,
    PlanModality,
    PlanPurchase,
    PlanPurchaseStatus,
    PlanType,
    WaitlistEntry,
    WaitlistStatus,
)
from studio_booking.services.booking_service import BookingService


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db: Session) -> Iterator[TestClient]:
    def _override_get_db() -> Iterator[Session]:
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def booking_service(db: Session) -> BookingService:
    return BookingService(db)


@pytest.fixture
def settings_override(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Temporarily change settings fields for one test."""

    def _apply(**values) -> None:
        for key, value in values.items():
            monkeypatch.setattr(settings, key, value)

    return _apply


# ============================================================================
# Builders
# ============================================================================


@pytest.fixture
def studio_today() -> date:
    return get_studio_today()


@pytest.fixture
def make_client(db: Session) -> Callable[..., Client]:
    def _make(full_name: str = "Test Client") -> Client:
        client_row = Client(full_name=full_name)
        db.add(client_row)
        db.commit()
        return client_row

    return _make


@pytest.fixture
def make_course(db: Session) -> Callable[..., Course]:
    def _make(
        *,
        category: Optional[str] = "pilates",
        booking_window_days: Optional[int] = None,
        cancellation_window_hours: Optional[int] = None,
        title: str = "Reformer Pilates",
    ) -> Course:
        course = Course(
            title=title,
            category=category,
            booking_window_days=booking_window_days,
            cancellation_window_hours=cancellation_window_hours,
        )
        db.add(course)
        db.commit()
        return course

    return _make


@pytest.fixture
def make_session(db: Session, make_course) -> Callable[..., ClassSession]:
    def _make(
        *,
        capacity: int = 10,
        starts_in: timedelta = timedelta(days=3),
        course: Optional[Course] = None,
        category: Optional[str] = "pilates",
    ) -> ClassSession:
        course = course or make_course(category=category)
        start = datetime.now(timezone.utc) + starts_in
        session = ClassSession(
            course_id=course.id,
            capacity=capacity,
            start_time=start,
            end_time=start + timedelta(hours=1),
            current_occupancy=0,
        )
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def make_plan(db: Session, studio_today: date) -> Callable[..., PlanPurchase]:
    def _make(
        client_row: Client,
        *,
        remaining: Optional[int] = 5,
        initial: Optional[int] = None,
        modality: str = PlanModality.FLEXIBLE.value,
        category: Optional[str] = None,
        app_only: bool = False,
        expires_at: Optional[date] = None,
        start_date: Optional[date] = None,
        status: str = PlanPurchaseStatus.ACTIVE.value,
        purchased_at: Optional[datetime] = None,
        name: str = "10 Class Pack",
    ) -> PlanPurchase:
        plan_type = PlanType(
            name=name,
            category=category,
            class_count=remaining if initial is None else initial,
            app_only=app_only,
        )
        db.add(plan_type)
        db.flush()
        plan = PlanPurchase(
            client_id=client_row.id,
            plan_type_id=plan_type.id,
            modality=modality,
            status=status,
            start_date=start_date or studio_today - timedelta(days=1),
            expires_at=expires_at,
            initial_classes=remaining if initial is None else initial,
            remaining_classes=remaining,
            purchased_at=purchased_at or datetime.now(timezone.utc),
        )
        db.add(plan)
        db.commit()
        return plan

    return _make


@pytest.fixture
def make_waitlist_entry(db: Session) -> Callable[..., WaitlistEntry]:
    def _make(
        session: ClassSession,
        client_row: Client,
        *,
        position: int,
        status: str = WaitlistStatus.PENDING.value,
        created_at: Optional[datetime] = None,
    ) -> WaitlistEntry:
        entry = WaitlistEntry(
            session_id=session.id,
            client_id=client_row.id,
            position=position,
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(entry)
        db.commit()
        return entry

    return _make
