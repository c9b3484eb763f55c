import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base, db_now


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    GUARDIAN = "guardian"


class GuardianRelation(str, enum.Enum):
    FATHER = "father"
    MOTHER = "mother"
    TUTOR = "tutor"


class ClassStatus(str, enum.Enum):
    DRAFT = "draft"
    GUIDE_READY = "guide_ready"
    SCHEDULED = "scheduled"
    IN_CLASS = "in_class"
    COMPLETED = "completed"


class QuizKind(str, enum.Enum):
    PRE = "pre"
    POST = "post"


class QuizStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"


class QuestionKind(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PlanStatus(str, enum.Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    PENDING = "pending"


class FeedbackKind(str, enum.Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, values_callable=_values), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)


class GuardianLink(Base):
    __tablename__ = "guardian_links"
    __table_args__ = (UniqueConstraint("guardian_id", "student_id", name="uq_guardian_links_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    guardian_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    relation: Mapped[GuardianRelation] = mapped_column(
        Enum(GuardianRelation, values_callable=_values), default=GuardianRelation.TUTOR, nullable=False
    )

    student: Mapped[User] = relationship("User", foreign_keys=[student_id])


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(32), nullable=True)
    section: Mapped[str | None] = mapped_column(String(32), nullable=True)
    teacher_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    teacher: Mapped[User | None] = relationship("User")


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("group_id", "student_id", name="uq_enrollments_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)


class ClassSession(Base):
    __tablename__ = "class_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False, index=True)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    course_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=45, nullable=False)
    status: Mapped[ClassStatus] = mapped_column(
        Enum(ClassStatus, values_callable=_values), default=ClassStatus.DRAFT, nullable=False
    )
    topic_id: Mapped[int | None] = mapped_column(ForeignKey("plan_topics.id"), nullable=True, index=True)
    lesson_guide: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    group: Mapped[Group] = relationship("Group")
    plan_topic: Mapped["PlanTopic"] = relationship("PlanTopic")


class Quiz(Base):
    __tablename__ = "quizzes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_session_id: Mapped[int] = mapped_column(ForeignKey("class_sessions.id"), nullable=False, index=True)
    kind: Mapped[QuizKind] = mapped_column(Enum(QuizKind, values_callable=_values), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_limit_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[QuizStatus] = mapped_column(
        Enum(QuizStatus, values_callable=_values), default=QuizStatus.DRAFT, nullable=False, index=True
    )
    available_from: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    class_session: Mapped[ClassSession] = relationship("ClassSession")


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[QuestionKind] = mapped_column(
        Enum(QuestionKind, values_callable=_values), default=QuestionKind.MULTIPLE_CHOICE, nullable=False
    )
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    correct_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    concept: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class Attempt(Base):
    __tablename__ = "attempts"
    __table_args__ = (
        Index(
            "uq_attempts_in_progress",
            "student_id",
            "quiz_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id"), nullable=False, index=True)
    status: Mapped[AttemptStatus] = mapped_column(
        Enum(AttemptStatus, values_callable=_values), default=AttemptStatus.IN_PROGRESS, nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answers_attempt_question"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(ForeignKey("attempts.id"), nullable=False, index=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id"), nullable=False)
    submitted_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    elapsed_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)


class AnnualPlan(Base):
    __tablename__ = "annual_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    grade: Mapped[str] = mapped_column(String(32), nullable=False)
    school_year: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    status: Mapped[PlanStatus] = mapped_column(
        Enum(PlanStatus, values_callable=_values), default=PlanStatus.DRAFT, nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_base: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    courses: Mapped[list["PlanCourse"]] = relationship(
        "PlanCourse", back_populates="plan", cascade="all, delete-orphan", order_by="PlanCourse.position"
    )


class PlanCourse(Base):
    __tablename__ = "plan_courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("annual_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    objectives: Mapped[str | None] = mapped_column(Text, nullable=True)
    weekly_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    plan: Mapped[AnnualPlan] = relationship("AnnualPlan", back_populates="courses")
    topics: Mapped[list["PlanTopic"]] = relationship(
        "PlanTopic", back_populates="course", cascade="all, delete-orphan", order_by="PlanTopic.position"
    )


class PlanTopic(Base):
    __tablename__ = "plan_topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("plan_courses.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    term: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    estimated_sessions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    objectives: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    course: Mapped[PlanCourse] = relationship("PlanCourse", back_populates="topics")


class TeacherAssignment(Base):
    __tablename__ = "teacher_assignments"
    __table_args__ = (
        UniqueConstraint("teacher_id", "course_id", "group_id", "school_year", name="uq_teacher_assignments"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("plan_courses.id"), nullable=False, index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), nullable=False, index=True)
    school_year: Mapped[str] = mapped_column(String(9), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    teacher: Mapped[User] = relationship("User")
    course: Mapped[PlanCourse] = relationship("PlanCourse")
    group: Mapped[Group] = relationship("Group")


class Feedback(Base):
    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    class_session_id: Mapped[int] = mapped_column(ForeignKey("class_sessions.id"), nullable=False, index=True)
    student_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    author_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    kind: Mapped[FeedbackKind] = mapped_column(Enum(FeedbackKind, values_callable=_values), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    strengths: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    areas_to_improve: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    recommendations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=db_now, nullable=False)

    class_session: Mapped[ClassSession] = relationship("ClassSession")
