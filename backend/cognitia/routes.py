import io
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy.orm import Session

from . import plan_services, quiz_services
from .ai_service import LessonAI, build_client
from .config import settings
from .database import SessionLocal, get_db_session
from .errors import SessionBoundToAnotherQuiz, SessionNotStarted, StoreError, ValidationError
from .middleware import get_current_user, require_roles
from .models import ClassStatus, Feedback, FeedbackKind, QuizKind, User, UserRole
from .quiz_session import QuizSession, SessionRegistry
from .schemas import (
    AnswerOut,
    AnswerRequest,
    AssignmentCreateRequest,
    AssignmentOut,
    AttemptResultOut,
    ClassSessionCreateRequest,
    ClassSessionOut,
    ClassSessionUpdateRequest,
    CompletedQuizOut,
    EnrollmentRequest,
    FeedbackCreateRequest,
    FeedbackOut,
    GroupCreateRequest,
    GroupOut,
    GuardianLinkRequest,
    LessonGuideRequest,
    LinkedStudentOut,
    LoginRequest,
    LoginResponse,
    PendingQuizOut,
    PlanCourseCreateRequest,
    PlanCourseOut,
    PlanCreateRequest,
    PlanDetailOut,
    PlanOut,
    PlanTopicCreateRequest,
    PlanTopicOut,
    PlanUpdateRequest,
    QuestionCreateRequest,
    QuestionOut,
    QuizAnalysisOut,
    QuizCreateRequest,
    QuizOut,
    QuizResultOut,
    QuizToSolveOut,
    QuizUpdateRequest,
    SessionStateOut,
    TeacherCurriculumOut,
    UserCreateRequest,
    UserOut,
)
from .services import (
    create_feedback,
    create_group,
    create_user,
    enroll_student,
    ensure_guardian_of,
    get_class,
    get_user_with_role,
    link_guardian,
    linked_students,
    list_classes,
    list_class_feedback,
    list_groups,
    list_users,
    login_user,
    schedule_class,
    student_feedback,
    update_class,
)
from .store import SqlAlchemyRecordStore
from .views import quiz_views


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Cognitia"])

STAFF = (UserRole.TEACHER, UserRole.ADMIN)


@lru_cache(maxsize=None)
def get_ai() -> LessonAI:
    return LessonAI(build_client())


@lru_cache(maxsize=None)
def get_registry() -> SessionRegistry:
    store = SqlAlchemyRecordStore(SessionLocal)
    return SessionRegistry(lambda: QuizSession(store, views=quiz_views))


def _answer_out(answer) -> AnswerOut:
    return AnswerOut(
        question_id=answer.question_id,
        submitted_text=answer.submitted_text,
        is_correct=answer.is_correct,
        elapsed_seconds=answer.elapsed_seconds,
    )


def _result_out(result) -> QuizResultOut:
    return QuizResultOut(
        score_percent=result.score_percent,
        total_questions=result.total_questions,
        correct_count=result.correct_count,
        answers=[_answer_out(answer) for answer in result.answers],
    )


def _session_state(session: QuizSession, resumed: bool = False) -> SessionStateOut:
    return SessionStateOut(
        attempt_id=session.attempt_id,
        resumed=resumed,
        started_at=session.started_at,
        time_limit_minutes=session.time_limit_minutes,
        is_started=session.is_started,
        is_submitted=session.is_submitted,
        remaining_seconds=session.remaining_seconds,
        remaining_display=session.format_remaining(),
        answered_count=session.answered_count,
        answers=[_answer_out(answer) for answer in session.answers()],
        result=_result_out(session.result) if session.result else None,
    )


def _live_session(registry: SessionRegistry, student_id: int, quiz_id: int) -> QuizSession:
    session = registry.get(student_id, quiz_id)
    if session is None or not session.is_started:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(SessionNotStarted()))
    return session


def _read_reference(file: UploadFile | None) -> str:
    if file is None or not file.filename:
        return ""
    try:
        if file.filename.lower().endswith(".pdf"):
            reader = PdfReader(io.BytesIO(file.file.read()))
            text = "\n".join(page.extract_text() or "" for page in reader.pages)
        else:
            text = file.file.read().decode("utf-8", errors="ignore")
    except (PdfReadError, OSError) as exc:
        logger.error(f"File read error: {exc}")
        raise HTTPException(status_code=400, detail="Could not read reference file") from exc
    return text[: settings.reference_text_limit]


def _feedback_out(item: Feedback) -> FeedbackOut:
    return FeedbackOut(
        id=item.id,
        class_session_id=item.class_session_id,
        topic=item.class_session.topic,
        student_id=item.student_id,
        author_id=item.author_id,
        kind=item.kind,
        content=item.content,
        strengths=item.strengths or [],
        areas_to_improve=item.areas_to_improve or [],
        recommendations=item.recommendations or [],
        created_at=item.created_at,
    )


# --- auth and users ---

@router.post("/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db_session)):
    token, user = login_user(db, email=payload.email, password=payload.password)
    return LoginResponse(access_token=token, role=user.role, user_id=user.id)


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return UserOut.model_validate(current_user)


@router.post("/admin/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def admin_create_user(
    payload: UserCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    user = create_user(
        db, email=payload.email, full_name=payload.full_name, raw_password=payload.password, role=payload.role
    )
    return UserOut.model_validate(user)


@router.get("/admin/users", response_model=list[UserOut])
def admin_list_users(
    role: UserRole | None = None,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    return [UserOut.model_validate(user) for user in list_users(db, role)]


@router.post("/admin/guardians/{guardian_id}/students", response_model=LinkedStudentOut, status_code=201)
def admin_link_guardian(
    guardian_id: int,
    payload: GuardianLinkRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    link = link_guardian(db, guardian_id=guardian_id, student_id=payload.student_id, relation=payload.relation)
    return LinkedStudentOut(
        id=link.student.id, full_name=link.student.full_name, email=link.student.email, relation=link.relation
    )


# --- groups and classes ---

@router.post("/groups", response_model=GroupOut, status_code=status.HTTP_201_CREATED)
def add_group(
    payload: GroupCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    group = create_group(
        db, name=payload.name, grade=payload.grade, section=payload.section, teacher_id=payload.teacher_id
    )
    return GroupOut.model_validate(group)


@router.get("/groups", response_model=list[GroupOut])
def get_groups(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*STAFF))):
    return [GroupOut.model_validate(group) for group in list_groups(db, current_user)]


@router.post("/groups/{group_id}/students", status_code=status.HTTP_201_CREATED)
def add_student_to_group(
    group_id: int,
    payload: EnrollmentRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    enrollment = enroll_student(db, group_id=group_id, student_id=payload.student_id)
    quiz_views.invalidate_all()
    return {"group_id": enrollment.group_id, "student_id": enrollment.student_id}


@router.post("/classes", response_model=ClassSessionOut, status_code=status.HTTP_201_CREATED)
def add_class(
    payload: ClassSessionCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    class_session = schedule_class(db, actor=current_user, **payload.model_dump())
    return ClassSessionOut.model_validate(class_session)


@router.get("/classes", response_model=list[ClassSessionOut])
def get_classes(
    group_id: int | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    return [ClassSessionOut.model_validate(item) for item in list_classes(db, current_user, group_id)]


@router.patch("/classes/{class_id}", response_model=ClassSessionOut)
def edit_class(
    class_id: int,
    payload: ClassSessionUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    class_session = get_class(db, class_id, current_user)
    updated = update_class(db, class_session, payload.model_dump(exclude_unset=True))
    return ClassSessionOut.model_validate(updated)


@router.post("/classes/{class_id}/guide", response_model=ClassSessionOut)
def generate_class_guide(
    class_id: int,
    payload: LessonGuideRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
    ai: LessonAI = Depends(get_ai),
):
    class_session = get_class(db, class_id, current_user)
    class_session.lesson_guide = ai.generate_lesson_guide(
        class_session.topic,
        class_session.context,
        grade=payload.grade or class_session.group.grade,
        area=payload.area or class_session.course_name,
        duration=class_session.duration_minutes,
        resources=payload.resources,
    )
    if class_session.status == ClassStatus.DRAFT:
        class_session.status = ClassStatus.GUIDE_READY
    db.commit()
    db.refresh(class_session)
    return ClassSessionOut.model_validate(class_session)


@router.post("/classes/{class_id}/quizzes/generate", response_model=QuizOut, status_code=status.HTTP_201_CREATED)
def generate_class_quiz(
    class_id: int,
    kind: QuizKind = Form(...),
    time_limit_minutes: int | None = Form(None, ge=1, le=240),
    area: str | None = Form(None),
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
    ai: LessonAI = Depends(get_ai),
):
    class_session = get_class(db, class_id, current_user)
    reference = _read_reference(file)
    generate = ai.generate_pre_quiz if kind == QuizKind.PRE else ai.generate_post_quiz
    generated = generate(
        class_session.topic,
        class_session.context,
        grade=class_session.group.grade,
        area=area or class_session.course_name,
        guide=class_session.lesson_guide,
        reference=reference,
    )
    quiz = quiz_services.store_generated_quiz(db, class_session, kind, generated, time_limit_minutes)
    return quiz_services.quiz_out(db, quiz)


@router.post("/classes/{class_id}/feedback", response_model=FeedbackOut, status_code=status.HTTP_201_CREATED)
def add_class_feedback(
    class_id: int,
    payload: FeedbackCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    class_session = get_class(db, class_id, current_user)
    feedback = create_feedback(db, actor=current_user, class_session=class_session, **payload.model_dump())
    return _feedback_out(feedback)


@router.get("/classes/{class_id}/feedback", response_model=list[FeedbackOut])
def get_class_feedback(
    class_id: int,
    student_id: int | None = None,
    kind: FeedbackKind | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    class_session = get_class(db, class_id, current_user)
    items = list_class_feedback(db, class_session, student_id=student_id, kind=kind)
    return [_feedback_out(item) for item in items]


# --- annual plans ---

@router.post("/plans", response_model=PlanOut, status_code=status.HTTP_201_CREATED)
def add_plan(
    payload: PlanCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    plan = plan_services.create_plan(db, actor=current_user, **payload.model_dump())
    return plan_services.plan_out(db, plan)


@router.get("/plans", response_model=list[PlanOut])
def get_plans(
    school_year: str | None = None,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(*STAFF)),
):
    return [plan_services.plan_out(db, plan) for plan in plan_services.list_plans(db, school_year)]


@router.get("/plans/{plan_id}", response_model=PlanDetailOut)
def get_plan_detail(plan_id: int, db: Session = Depends(get_db_session), _: User = Depends(require_roles(*STAFF))):
    return plan_services.plan_detail(db, plan_services.get_plan(db, plan_id))


@router.patch("/plans/{plan_id}", response_model=PlanOut)
def edit_plan(
    plan_id: int,
    payload: PlanUpdateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    plan = plan_services.get_plan(db, plan_id)
    plan = plan_services.update_plan(db, plan, payload.model_dump(exclude_unset=True))
    return plan_services.plan_out(db, plan)


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_plan(plan_id: int, db: Session = Depends(get_db_session), _: User = Depends(require_roles(UserRole.ADMIN))):
    plan_services.delete_plan(db, plan_services.get_plan(db, plan_id))


@router.post("/plans/{plan_id}/duplicate", response_model=PlanDetailOut, status_code=status.HTTP_201_CREATED)
def copy_plan(
    plan_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    plan = plan_services.duplicate_plan(db, plan_services.get_plan(db, plan_id), current_user)
    return plan_services.plan_detail(db, plan)


@router.post("/plans/{plan_id}/courses", response_model=PlanCourseOut, status_code=status.HTTP_201_CREATED)
def add_plan_course(
    plan_id: int,
    payload: PlanCourseCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    plan = plan_services.get_plan(db, plan_id)
    return PlanCourseOut.model_validate(plan_services.add_course(db, plan, **payload.model_dump()))


@router.post("/courses/{course_id}/topics", response_model=PlanTopicOut, status_code=status.HTTP_201_CREATED)
def add_course_topic(
    course_id: int,
    payload: PlanTopicCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    course = plan_services.get_course(db, course_id)
    return PlanTopicOut.model_validate(plan_services.add_topic(db, course, **payload.model_dump()))


# --- teacher assignments ---

@router.post("/assignments", response_model=AssignmentOut, status_code=status.HTTP_201_CREATED)
def add_assignment(
    payload: AssignmentCreateRequest,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    return plan_services.assignment_out(plan_services.create_assignment(db, **payload.model_dump()))


@router.get("/assignments", response_model=list[AssignmentOut])
def get_assignments(
    school_year: str | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    items = plan_services.list_assignments(db, current_user, school_year)
    return [plan_services.assignment_out(item) for item in items]


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_assignment(
    assignment_id: int,
    db: Session = Depends(get_db_session),
    _: User = Depends(require_roles(UserRole.ADMIN)),
):
    plan_services.delete_assignment(db, assignment_id)


@router.get("/teacher/topics", response_model=TeacherCurriculumOut)
def teacher_topics(
    school_year: str | None = None,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.TEACHER)),
):
    return plan_services.teacher_curriculum(db, current_user, school_year)


# --- quiz authoring ---

@router.post("/quizzes", response_model=QuizOut, status_code=status.HTTP_201_CREATED)
def add_quiz(
    payload: QuizCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    quiz = quiz_services.create_quiz(db, actor=current_user, **payload.model_dump())
    return quiz_services.quiz_out(db, quiz)


@router.patch("/quizzes/{quiz_id}", response_model=QuizOut)
def edit_quiz(
    quiz_id: int,
    payload: QuizUpdateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    quiz = quiz_services.update_quiz(db, quiz, payload.model_dump(exclude_unset=True))
    return quiz_services.quiz_out(db, quiz)


@router.post("/quizzes/{quiz_id}/publish", response_model=QuizOut)
def publish(quiz_id: int, db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*STAFF))):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    return quiz_services.quiz_out(db, quiz_services.publish_quiz(db, quiz))


@router.post("/quizzes/{quiz_id}/close", response_model=QuizOut)
def close(quiz_id: int, db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(*STAFF))):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    return quiz_services.quiz_out(db, quiz_services.close_quiz(db, quiz))


@router.post("/quizzes/{quiz_id}/questions", response_model=QuestionOut, status_code=status.HTTP_201_CREATED)
def add_quiz_question(
    quiz_id: int,
    payload: QuestionCreateRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    fields = payload.model_dump()
    question = quiz_services.add_question(db, quiz, **fields)
    return QuestionOut.model_validate(question)


@router.get("/quizzes/{quiz_id}/questions", response_model=list[QuestionOut])
def get_quiz_questions(
    quiz_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    return [QuestionOut.model_validate(question) for question in quiz_services.list_questions(db, quiz.id)]


@router.get("/quizzes/{quiz_id}/results", response_model=list[AttemptResultOut])
def get_quiz_results(
    quiz_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    return quiz_services.quiz_results(db, quiz.id)


@router.post("/quizzes/{quiz_id}/analysis", response_model=QuizAnalysisOut)
def analyze(
    quiz_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF)),
    ai: LessonAI = Depends(get_ai),
):
    quiz = quiz_services.get_quiz_for_staff(db, quiz_id, current_user)
    return quiz_services.analyze_quiz(db, quiz, ai)


# --- students ---

@router.get("/student/quizzes/pending", response_model=list[PendingQuizOut])
def student_pending(db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.STUDENT))):
    return quiz_services.cached_pending_quizzes(db, current_user.id)


@router.get("/student/quizzes/completed", response_model=list[CompletedQuizOut])
def student_completed(
    db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.STUDENT))
):
    return quiz_services.cached_completed_quizzes(db, current_user.id)


@router.get("/student/feedback", response_model=list[FeedbackOut])
def student_feedback_list(
    db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.STUDENT))
):
    return [_feedback_out(item) for item in student_feedback(db, current_user.id)]


@router.get("/student/quizzes/{quiz_id}", response_model=QuizToSolveOut)
def student_quiz(
    quiz_id: int, db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.STUDENT))
):
    quiz = quiz_services.get_quiz_for_student(db, quiz_id, current_user)
    return quiz_services.quiz_to_solve(db, quiz)


@router.post("/student/quizzes/{quiz_id}/start", response_model=SessionStateOut)
def start_quiz(
    quiz_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    registry: SessionRegistry = Depends(get_registry),
):
    quiz = quiz_services.get_quiz_for_student(db, quiz_id, current_user)
    if quiz_services.has_completed(db, current_user.id, quiz.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Quiz already completed")
    try:
        session, started = registry.open(current_user.id, quiz.id, quiz.time_limit_minutes)
    except SessionBoundToAnotherQuiz as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=f"Error starting quiz: {exc}") from exc
    return _session_state(session, resumed=started.resumed)


@router.get("/student/quizzes/{quiz_id}/session", response_model=SessionStateOut)
def quiz_session_state(
    quiz_id: int,
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    registry: SessionRegistry = Depends(get_registry),
):
    return _session_state(_live_session(registry, current_user.id, quiz_id))


@router.post("/student/quizzes/{quiz_id}/answers", response_model=AnswerOut)
def record_answer(
    quiz_id: int,
    payload: AnswerRequest,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    registry: SessionRegistry = Depends(get_registry),
):
    session = _live_session(registry, current_user.id, quiz_id)
    if session.is_submitted:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Quiz already submitted")
    question = quiz_services.get_question(db, quiz_id, payload.question_id)
    is_correct = quiz_services.evaluate_answer(question, payload.answer_text)
    answer = session.record_answer(question.id, payload.answer_text, is_correct, payload.elapsed_seconds)
    return _answer_out(answer)


@router.post("/student/quizzes/{quiz_id}/submit", response_model=QuizResultOut)
def submit_quiz(
    quiz_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.STUDENT)),
    registry: SessionRegistry = Depends(get_registry),
):
    session = registry.get(current_user.id, quiz_id)
    if session is None or not session.is_started:
        stored = quiz_services.submitted_result(db, current_user.id, quiz_id)
        if stored is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(SessionNotStarted()))
        return stored
    if session.is_submitted:
        result = session.result
    else:
        try:
            result = session.submit()
        except StoreError as exc:
            raise HTTPException(status_code=503, detail=f"Error submitting quiz: {exc}") from exc
    registry.discard(current_user.id, quiz_id)
    return _result_out(result)


# --- guardians ---

@router.get("/guardian/students", response_model=list[LinkedStudentOut])
def guardian_students(
    db: Session = Depends(get_db_session), current_user: User = Depends(require_roles(UserRole.GUARDIAN))
):
    return [
        LinkedStudentOut(
            id=link.student.id, full_name=link.student.full_name, email=link.student.email, relation=link.relation
        )
        for link in linked_students(db, current_user)
    ]


@router.get("/guardian/students/{student_id}/results", response_model=list[CompletedQuizOut])
def guardian_student_results(
    student_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.GUARDIAN)),
):
    get_user_with_role(db, student_id, UserRole.STUDENT)
    ensure_guardian_of(db, current_user, student_id)
    return quiz_services.completed_quizzes(db, student_id)


@router.get("/guardian/students/{student_id}/feedback", response_model=list[FeedbackOut])
def guardian_student_feedback(
    student_id: int,
    db: Session = Depends(get_db_session),
    current_user: User = Depends(require_roles(UserRole.GUARDIAN)),
):
    get_user_with_role(db, student_id, UserRole.STUDENT)
    ensure_guardian_of(db, current_user, student_id)
    return [_feedback_out(item) for item in student_feedback(db, student_id)]
