from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    ClassStatus,
    FeedbackKind,
    GuardianRelation,
    PlanStatus,
    QuestionKind,
    QuizKind,
    QuizStatus,
    UserRole,
)


class LoginRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    password: str = Field(min_length=8)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    user_id: int


class UserCreateRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    full_name: str = Field(min_length=2, max_length=255)
    password: str = Field(min_length=8)
    role: UserRole


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: str
    role: UserRole


class GuardianLinkRequest(BaseModel):
    student_id: int
    relation: GuardianRelation = GuardianRelation.TUTOR


class LinkedStudentOut(BaseModel):
    id: int
    full_name: str
    email: str
    relation: GuardianRelation


class GroupCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    grade: str | None = None
    section: str | None = None
    teacher_id: int | None = None


class GroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    grade: str | None = None
    section: str | None = None
    teacher_id: int | None = None


class EnrollmentRequest(BaseModel):
    student_id: int


class ClassSessionCreateRequest(BaseModel):
    group_id: int
    topic: str = Field(min_length=2, max_length=255)
    course_name: str | None = None
    context: str | None = None
    scheduled_at: datetime | None = None
    duration_minutes: int = Field(default=45, ge=10, le=240)
    topic_id: int | None = None


class ClassSessionUpdateRequest(BaseModel):
    topic: str | None = Field(default=None, min_length=2, max_length=255)
    course_name: str | None = None
    context: str | None = None
    scheduled_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=10, le=240)
    status: ClassStatus | None = None
    topic_id: int | None = None


class ClassSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    topic: str
    course_name: str | None = None
    context: str | None = None
    scheduled_at: datetime | None = None
    duration_minutes: int
    status: ClassStatus
    topic_id: int | None = None
    lesson_guide: dict[str, Any] | None = None


class LessonGuideRequest(BaseModel):
    grade: str | None = None
    area: str | None = None
    resources: list[str] = Field(default_factory=list)


class QuizCreateRequest(BaseModel):
    class_session_id: int
    kind: QuizKind
    title: str = Field(min_length=2, max_length=255)
    instructions: str | None = None
    time_limit_minutes: int | None = Field(default=None, ge=1, le=240)
    available_from: datetime | None = None
    due_at: datetime | None = None


class QuizUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=255)
    instructions: str | None = None
    time_limit_minutes: int | None = Field(default=None, ge=1, le=240)
    available_from: datetime | None = None
    due_at: datetime | None = None


class QuizOut(BaseModel):
    id: int
    class_session_id: int
    kind: QuizKind
    title: str
    instructions: str | None = None
    time_limit_minutes: int | None = None
    status: QuizStatus
    available_from: datetime | None = None
    due_at: datetime | None = None
    question_count: int = 0


class OptionIn(BaseModel):
    text: str
    is_correct: bool = False


class QuestionCreateRequest(BaseModel):
    text: str = Field(min_length=2)
    kind: QuestionKind = QuestionKind.MULTIPLE_CHOICE
    options: list[OptionIn] = Field(default_factory=list)
    correct_answer: str | None = None
    justification: str | None = None
    concept: str | None = None
    position: int | None = Field(default=None, ge=1)


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quiz_id: int
    text: str
    kind: QuestionKind
    options: list[dict[str, Any]] | None = None
    correct_answer: str | None = None
    justification: str | None = None
    concept: str | None = None
    position: int


class StudentQuestionOut(BaseModel):
    id: int
    text: str
    kind: QuestionKind
    options: list[str] = Field(default_factory=list)
    position: int


class StimulusOut(BaseModel):
    title: str
    content: str
    visual_description: str
    reading_time: str


class QuizToSolveOut(BaseModel):
    id: int
    title: str
    kind: QuizKind
    time_limit_minutes: int | None = None
    instructions: str | None = None
    stimulus: StimulusOut | None = None
    questions: list[StudentQuestionOut]
    course_name: str
    topic: str


class PendingQuizOut(BaseModel):
    id: int
    title: str
    kind: QuizKind
    time_limit_minutes: int | None = None
    instructions: str | None = None
    available_from: datetime | None = None
    due_at: datetime | None = None
    course_name: str
    topic: str
    group_name: str
    question_count: int


class CompletedQuizOut(BaseModel):
    id: int
    title: str
    kind: QuizKind
    course_name: str
    topic: str
    score: int | None = None
    completed_at: datetime | None = None
    attempt_id: int


class AnswerRequest(BaseModel):
    question_id: int
    answer_text: str = Field(max_length=2000)
    elapsed_seconds: int | None = Field(default=None, ge=0)


class AnswerOut(BaseModel):
    question_id: int
    submitted_text: str
    is_correct: bool
    elapsed_seconds: int | None = None


class QuizResultOut(BaseModel):
    score_percent: int
    total_questions: int
    correct_count: int
    answers: list[AnswerOut]


class SessionStateOut(BaseModel):
    attempt_id: int | None = None
    resumed: bool = False
    started_at: datetime | None = None
    time_limit_minutes: int
    is_started: bool
    is_submitted: bool
    remaining_seconds: int
    remaining_display: str
    answered_count: int
    answers: list[AnswerOut] = Field(default_factory=list)
    result: QuizResultOut | None = None


class AttemptResultOut(BaseModel):
    student_id: int
    student_name: str
    score: int | None = None
    submitted_at: datetime | None = None


class QuestionStatsOut(BaseModel):
    question_id: int
    question_text: str
    concept: str | None = None
    total_answers: int
    correct: int
    incorrect: int
    percent_correct: int
    frequent_wrong_answers: list[str]


class QuizAnalysisOut(BaseModel):
    quiz_id: int
    participation: int
    group_average: int
    questions: list[QuestionStatsOut]
    ai: dict[str, Any]


SCHOOL_YEAR = r"^\d{4}$"


class PlanCreateRequest(BaseModel):
    grade: str = Field(min_length=1, max_length=32)
    school_year: str = Field(pattern=SCHOOL_YEAR)
    description: str | None = None
    status: PlanStatus = PlanStatus.DRAFT
    is_base: bool = False


class PlanUpdateRequest(BaseModel):
    grade: str | None = Field(default=None, min_length=1, max_length=32)
    school_year: str | None = Field(default=None, pattern=SCHOOL_YEAR)
    description: str | None = None
    status: PlanStatus | None = None


class PlanOut(BaseModel):
    id: int
    grade: str
    school_year: str
    status: PlanStatus
    description: str | None = None
    is_base: bool
    course_count: int = 0
    topic_count: int = 0
    coverage: int = 0


class PlanCourseCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: str | None = None
    objectives: str | None = None
    weekly_hours: int | None = Field(default=None, ge=0, le=40)
    position: int | None = Field(default=None, ge=1)


class PlanTopicCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    term: int | None = Field(default=None, ge=1, le=4)
    position: int | None = Field(default=None, ge=1)
    estimated_sessions: int | None = Field(default=None, ge=1)
    objectives: str | None = None
    description: str | None = None


class PlanTopicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    name: str
    term: int | None = None
    position: int
    estimated_sessions: int | None = None
    objectives: str | None = None
    description: str | None = None


class PlanCourseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_id: int
    name: str
    description: str | None = None
    objectives: str | None = None
    weekly_hours: int | None = None
    position: int
    topics: list[PlanTopicOut] = Field(default_factory=list)


class PlanDetailOut(PlanOut):
    courses: list[PlanCourseOut] = Field(default_factory=list)


class AssignmentCreateRequest(BaseModel):
    teacher_id: int
    course_id: int
    group_id: int
    school_year: str = Field(pattern=SCHOOL_YEAR)


class AssignmentOut(BaseModel):
    id: int
    teacher_id: int
    teacher_name: str
    course_id: int
    course_name: str
    weekly_hours: int | None = None
    group_id: int
    group_name: str
    school_year: str


class TopicProgressOut(BaseModel):
    id: int
    name: str
    course_id: int
    term: int | None = None
    position: int
    estimated_sessions: int | None = None
    objectives: str | None = None
    status: Literal["pending", "in_progress", "completed"]
    progress: int
    sessions: int


class TermProgressOut(BaseModel):
    number: int
    name: str
    progress: int
    topic_ids: list[int]


class CourseProgressOut(BaseModel):
    id: int
    name: str
    weekly_hours: int | None = None
    progress: int
    group_id: int | None = None
    group_name: str | None = None
    topics: list[TopicProgressOut]
    terms: list[TermProgressOut]


class TeacherCurriculumOut(BaseModel):
    courses: list[CourseProgressOut]
    total_topics: int
    completed_topics: int
    assigned_courses: int
    overall_progress: int


class FeedbackCreateRequest(BaseModel):
    kind: FeedbackKind
    student_id: int | None = None
    content: str = Field(min_length=1, max_length=5000)
    strengths: list[str] = Field(default_factory=list)
    areas_to_improve: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class FeedbackOut(BaseModel):
    id: int
    class_session_id: int
    topic: str
    student_id: int | None = None
    author_id: int | None = None
    kind: FeedbackKind
    content: str
    strengths: list[str]
    areas_to_improve: list[str]
    recommendations: list[str]
    created_at: datetime
