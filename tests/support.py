import json
import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from backend.app import app
from backend.cognitia.ai_service import LessonAI
from backend.cognitia.database import Base, build_engine, get_db_session
from backend.cognitia.models import ClassSession, Enrollment, Group, GuardianRelation, Question, Quiz, QuizKind, QuizStatus, UserRole
from backend.cognitia.quiz_session import QuizSession, SessionRegistry
from backend.cognitia.routes import get_ai, get_registry
from backend.cognitia.security import create_access_token
from backend.cognitia.services import create_user, link_guardian
from backend.cognitia.store import SqlAlchemyRecordStore
from backend.cognitia.views import quiz_views

API = "/api/v1"

QUESTIONS = [
    ("2 + 2 = ?", [("4", True), ("5", False), ("3", False)]),
    ("Capital of Peru?", [("Lima", True), ("Cusco", False)]),
    ("Water boils at 100 C at sea level", [("True", True), ("False", False)]),
    ("3 x 3 = ?", [("9", True), ("6", False)]),
    ("Largest planet?", [("Jupiter", True), ("Mars", False)]),
]


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeChatClient:
    """Stands in for the Groq client: ``client.chat.completions.create``."""

    def __init__(self, replies=None, error: Exception | None = None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, messages, model, temperature):
        self.calls.append({"messages": messages, "model": model, "temperature": temperature})
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if self.replies else "{}"
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id, role=user.role.value)}"}


def build_classroom(db):
    """One teacher, one enrolled student with a guardian, and a published five-question quiz."""
    admin = create_user(db, email="admin@school.test", full_name="Ada Admin", raw_password="Admin@12345", role=UserRole.ADMIN)
    teacher = create_user(db, email="teacher@school.test", full_name="Tomas Teacher", raw_password="Teach@12345", role=UserRole.TEACHER)
    student = create_user(db, email="student@school.test", full_name="Sofia Student", raw_password="Stud@12345", role=UserRole.STUDENT)
    guardian = create_user(db, email="guardian@school.test", full_name="Gabriel Guardian", raw_password="Guard@12345", role=UserRole.GUARDIAN)
    link_guardian(db, guardian_id=guardian.id, student_id=student.id, relation=GuardianRelation.FATHER)

    group = Group(name="5A", grade="5", section="A", teacher_id=teacher.id)
    db.add(group)
    db.flush()
    db.add(Enrollment(group_id=group.id, student_id=student.id))
    class_session = ClassSession(group_id=group.id, topic="Fractions", course_name="Mathematics", duration_minutes=45)
    db.add(class_session)
    db.flush()
    quiz = Quiz(class_session_id=class_session.id, kind=QuizKind.POST, title="Fractions exit quiz",
                time_limit_minutes=10, status=QuizStatus.PUBLISHED)
    db.add(quiz)
    db.flush()
    questions = []
    for position, (text, options) in enumerate(QUESTIONS, start=1):
        question = Question(
            quiz_id=quiz.id,
            text=text,
            options=[{"text": option, "is_correct": correct} for option, correct in options],
            correct_answer=next(option for option, correct in options if correct),
            position=position,
        )
        db.add(question)
        questions.append(question)
    db.commit()

    return SimpleNamespace(
        admin=admin,
        teacher=teacher,
        student=student,
        guardian=guardian,
        group=group,
        class_session=class_session,
        quiz=quiz,
        questions=questions,
    )


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory SQLite database per test."""

    def setUp(self) -> None:
        self.engine = build_engine("sqlite://")
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
        )
        self.db = self.session_factory()
        self.addCleanup(self.engine.dispose)
        self.addCleanup(self.db.close)


class ApiTestCase(DatabaseTestCase):
    """TestClient wired to the test database, a fake clock and a disabled AI."""

    def setUp(self) -> None:
        super().setUp()
        self.clock = FakeClock()
        store = SqlAlchemyRecordStore(self.session_factory)
        self.registry = SessionRegistry(
            lambda: QuizSession(store, clock=self.clock, views=quiz_views, timer_factory=None)
        )

        def override_db():
            session = self.session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db_session] = override_db
        app.dependency_overrides[get_registry] = lambda: self.registry
        self.use_ai(None)
        quiz_views.invalidate_all()
        self.addCleanup(quiz_views.invalidate_all)
        self.addCleanup(app.dependency_overrides.clear)
        self.addCleanup(self.registry.close_all)

        self.client = TestClient(app)
        self.classroom = build_classroom(self.db)

    def use_ai(self, client) -> None:
        app.dependency_overrides[get_ai] = lambda: LessonAI(client)
