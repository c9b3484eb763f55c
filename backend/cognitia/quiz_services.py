import logging
from collections import Counter

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from .ai_service import LessonAI
from .database import db_now
from .models import (
    Answer,
    Attempt,
    AttemptStatus,
    ClassSession,
    Enrollment,
    Group,
    Question,
    QuestionKind,
    Quiz,
    QuizKind,
    QuizStatus,
    User,
    UserRole,
)
from .quiz_session import score_percent
from .schemas import (
    AnswerOut,
    AttemptResultOut,
    CompletedQuizOut,
    PendingQuizOut,
    QuestionStatsOut,
    QuizAnalysisOut,
    QuizOut,
    QuizResultOut,
    QuizToSolveOut,
    StimulusOut,
    StudentQuestionOut,
)
from .services import ensure_group_access, get_class, student_group_ids
from .views import quiz_views


logger = logging.getLogger(__name__)

PRE_QUIZ_PREFIX = "Micro-learning: "


def _group_name(group: Group | None) -> str:
    if group is None:
        return "No group"
    if group.name:
        return group.name
    return f"{group.grade or ''} {group.section or ''}".strip() or "No group"


def _normalize(text: str | None) -> str:
    return " ".join((text or "").split()).lower()


def correct_option_text(options: list[dict] | None) -> str | None:
    for option in options or []:
        if option.get("is_correct"):
            return option.get("text")
    return None


def evaluate_answer(question: Question, answer_text: str) -> bool:
    given = _normalize(answer_text)
    if not given:
        return False
    if question.kind in (QuestionKind.MULTIPLE_CHOICE, QuestionKind.TRUE_FALSE) and question.options:
        return any(option.get("is_correct") and _normalize(option.get("text")) == given for option in question.options)
    return given == _normalize(question.correct_answer)


# --- authoring ---

def quiz_out(db: Session, quiz: Quiz) -> QuizOut:
    count = db.query(func.count(Question.id)).filter(Question.quiz_id == quiz.id).scalar() or 0
    return QuizOut(
        id=quiz.id,
        class_session_id=quiz.class_session_id,
        kind=quiz.kind,
        title=quiz.title,
        instructions=quiz.instructions,
        time_limit_minutes=quiz.time_limit_minutes,
        status=quiz.status,
        available_from=quiz.available_from,
        due_at=quiz.due_at,
        question_count=count,
    )


def create_quiz(db: Session, *, actor: User, **fields) -> Quiz:
    get_class(db, fields["class_session_id"], actor)
    quiz = Quiz(status=QuizStatus.DRAFT, **fields)
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    logger.info(f"Created {quiz.kind.value} quiz {quiz.id} for class {quiz.class_session_id}")
    return quiz


def get_quiz_for_staff(db: Session, quiz_id: int, actor: User) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if not quiz:
        raise HTTPException(status_code=404, detail="Quiz not found")
    ensure_group_access(quiz.class_session.group, actor)
    return quiz


def update_quiz(db: Session, quiz: Quiz, changes: dict) -> Quiz:
    if quiz.status == QuizStatus.CLOSED:
        raise HTTPException(status_code=400, detail="Closed quizzes cannot be edited")
    for key, value in changes.items():
        setattr(quiz, key, value)
    db.commit()
    db.refresh(quiz)
    return quiz


def publish_quiz(db: Session, quiz: Quiz) -> Quiz:
    if quiz.status == QuizStatus.CLOSED:
        raise HTTPException(status_code=400, detail="Closed quizzes cannot be published")
    has_questions = db.query(Question.id).filter(Question.quiz_id == quiz.id).first()
    if not has_questions:
        raise HTTPException(status_code=400, detail="Quiz has no questions")
    quiz.status = QuizStatus.PUBLISHED
    db.commit()
    db.refresh(quiz)
    quiz_views.invalidate_all()
    logger.info(f"Published quiz {quiz.id}")
    return quiz


def close_quiz(db: Session, quiz: Quiz) -> Quiz:
    quiz.status = QuizStatus.CLOSED
    db.commit()
    db.refresh(quiz)
    quiz_views.invalidate_all()
    logger.info(f"Closed quiz {quiz.id}")
    return quiz


def add_question(db: Session, quiz: Quiz, **fields) -> Question:
    if quiz.status != QuizStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Questions can only be added to draft quizzes")
    if not fields.get("position"):
        last = db.query(func.max(Question.position)).filter(Question.quiz_id == quiz.id).scalar()
        fields["position"] = (last or 0) + 1
    options = fields.get("options") or []
    if not fields.get("correct_answer"):
        fields["correct_answer"] = correct_option_text(options)
    question = Question(quiz_id=quiz.id, **fields)
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def list_questions(db: Session, quiz_id: int) -> list[Question]:
    return db.query(Question).filter(Question.quiz_id == quiz_id).order_by(Question.position).all()


def store_generated_quiz(db: Session, class_session: ClassSession, kind: QuizKind, generated: dict,
                         time_limit_minutes: int | None = None) -> Quiz:
    if kind == QuizKind.PRE:
        stimulus = generated["stimulus"]
        quiz = Quiz(
            class_session_id=class_session.id,
            kind=kind,
            title=f"{PRE_QUIZ_PREFIX}{stimulus['title']}",
            instructions=stimulus["content"],
            time_limit_minutes=time_limit_minutes,
            status=QuizStatus.DRAFT,
        )
        items = [
            {
                "text": item["question"],
                "options": item["options"],
                "justification": item["feedback_incorrect"],
                "concept": item["concept"],
            }
            for item in generated["questions"]
        ]
    else:
        metadata = generated["metadata"]
        quiz = Quiz(
            class_session_id=class_session.id,
            kind=kind,
            title=metadata["title"],
            instructions=metadata["purpose"],
            time_limit_minutes=time_limit_minutes,
            status=QuizStatus.DRAFT,
        )
        items = [
            {
                "text": f"{item['scenario']}\n\n{item['question']}".strip(),
                "options": item["options"],
                "justification": item["explanation"],
                "concept": item["concept"],
            }
            for item in generated["questions"]
        ]

    db.add(quiz)
    db.flush()
    for position, item in enumerate(items, start=1):
        db.add(
            Question(
                quiz_id=quiz.id,
                kind=QuestionKind.MULTIPLE_CHOICE,
                correct_answer=correct_option_text(item["options"]),
                position=position,
                **item,
            )
        )
    db.commit()
    db.refresh(quiz)
    logger.info(f"Stored generated {kind.value} quiz {quiz.id} with {len(items)} questions")
    return quiz


# --- student views ---

def _question_counts(db: Session, quiz_ids: list[int]) -> dict[int, int]:
    if not quiz_ids:
        return {}
    rows = (
        db.query(Question.quiz_id, func.count(Question.id))
        .filter(Question.quiz_id.in_(quiz_ids))
        .group_by(Question.quiz_id)
        .all()
    )
    return dict(rows)


def pending_quizzes(db: Session, student_id: int) -> list[PendingQuizOut]:
    group_ids = student_group_ids(db, student_id)
    if not group_ids:
        return []
    quizzes = (
        db.query(Quiz)
        .join(ClassSession, Quiz.class_session_id == ClassSession.id)
        .filter(Quiz.status == QuizStatus.PUBLISHED, ClassSession.group_id.in_(group_ids))
        .order_by(Quiz.created_at.desc())
        .all()
    )
    completed = {
        row[0]
        for row in db.query(Attempt.quiz_id)
        .filter(Attempt.student_id == student_id, Attempt.status == AttemptStatus.COMPLETED)
        .all()
    }
    counts = _question_counts(db, [quiz.id for quiz in quizzes])

    pending = []
    for quiz in quizzes:
        if quiz.id in completed:
            continue
        class_session = quiz.class_session
        pending.append(
            PendingQuizOut(
                id=quiz.id,
                title=quiz.title,
                kind=quiz.kind,
                time_limit_minutes=quiz.time_limit_minutes,
                instructions=quiz.instructions,
                available_from=quiz.available_from,
                due_at=quiz.due_at,
                course_name=class_session.course_name or "No course",
                topic=class_session.topic or "No topic",
                group_name=_group_name(class_session.group),
                question_count=counts.get(quiz.id, 0),
            )
        )
    return pending


def completed_quizzes(db: Session, student_id: int) -> list[CompletedQuizOut]:
    rows = (
        db.query(Attempt, Quiz)
        .join(Quiz, Attempt.quiz_id == Quiz.id)
        .filter(Attempt.student_id == student_id, Attempt.status == AttemptStatus.COMPLETED)
        .order_by(Attempt.submitted_at.desc())
        .all()
    )
    return [
        CompletedQuizOut(
            id=quiz.id,
            title=quiz.title,
            kind=quiz.kind,
            course_name=quiz.class_session.course_name or "No course",
            topic=quiz.class_session.topic or "No topic",
            score=attempt.total_score,
            completed_at=attempt.submitted_at,
            attempt_id=attempt.id,
        )
        for attempt, quiz in rows
    ]


def cached_pending_quizzes(db: Session, student_id: int) -> list[PendingQuizOut]:
    return quiz_views.get_or_load("pending_quizzes", student_id, lambda: pending_quizzes(db, student_id))


def cached_completed_quizzes(db: Session, student_id: int) -> list[CompletedQuizOut]:
    return quiz_views.get_or_load("completed_quizzes", student_id, lambda: completed_quizzes(db, student_id))


def get_quiz_for_student(db: Session, quiz_id: int, student: User) -> Quiz:
    quiz = db.get(Quiz, quiz_id)
    if not quiz or quiz.status != QuizStatus.PUBLISHED:
        raise HTTPException(status_code=404, detail="Quiz not found")
    if student.role != UserRole.ADMIN:
        enrolled = (
            db.query(Enrollment.id)
            .filter(Enrollment.student_id == student.id, Enrollment.group_id == quiz.class_session.group_id)
            .first()
        )
        if not enrolled:
            raise HTTPException(status_code=403, detail="Quiz is not assigned to this student")
    now = db_now()
    if quiz.available_from and now < quiz.available_from:
        raise HTTPException(status_code=400, detail="Quiz is not available yet")
    return quiz


def quiz_to_solve(db: Session, quiz: Quiz) -> QuizToSolveOut:
    class_session = quiz.class_session
    stimulus = None
    if quiz.kind == QuizKind.PRE and quiz.instructions:
        stimulus = StimulusOut(
            title=quiz.title.replace(PRE_QUIZ_PREFIX, ""),
            content=quiz.instructions,
            visual_description=f"Educational illustration about {class_session.topic or 'the topic'}",
            reading_time="2 minutes",
        )
    questions = [
        StudentQuestionOut(
            id=question.id,
            text=question.text,
            kind=question.kind,
            options=[option.get("text", "") for option in question.options or []],
            position=question.position,
        )
        for question in list_questions(db, quiz.id)
    ]
    return QuizToSolveOut(
        id=quiz.id,
        title=quiz.title,
        kind=quiz.kind,
        time_limit_minutes=quiz.time_limit_minutes,
        instructions=quiz.instructions,
        stimulus=stimulus,
        questions=questions,
        course_name=class_session.course_name or "No course",
        topic=class_session.topic or "No topic",
    )


def get_question(db: Session, quiz_id: int, question_id: int) -> Question:
    question = db.get(Question, question_id)
    if not question or question.quiz_id != quiz_id:
        raise HTTPException(status_code=404, detail="Question not found in this quiz")
    return question


def has_completed(db: Session, student_id: int, quiz_id: int) -> bool:
    return (
        db.query(Attempt.id)
        .filter(Attempt.student_id == student_id, Attempt.quiz_id == quiz_id, Attempt.status == AttemptStatus.COMPLETED)
        .first()
        is not None
    )


def submitted_result(db: Session, student_id: int, quiz_id: int) -> QuizResultOut | None:
    attempt = (
        db.query(Attempt)
        .filter(Attempt.student_id == student_id, Attempt.quiz_id == quiz_id, Attempt.status == AttemptStatus.COMPLETED)
        .order_by(Attempt.submitted_at.desc())
        .first()
    )
    if attempt is None:
        return None
    answers = db.query(Answer).filter(Answer.attempt_id == attempt.id).order_by(Answer.id).all()
    return QuizResultOut(
        score_percent=attempt.total_score or 0,
        total_questions=len(answers),
        correct_count=sum(1 for answer in answers if answer.is_correct),
        answers=[
            AnswerOut(
                question_id=answer.question_id,
                submitted_text=answer.submitted_text,
                is_correct=answer.is_correct,
                elapsed_seconds=answer.elapsed_seconds,
            )
            for answer in answers
        ],
    )


# --- teacher results ---

def quiz_results(db: Session, quiz_id: int) -> list[AttemptResultOut]:
    rows = (
        db.query(Attempt, User)
        .join(User, Attempt.student_id == User.id)
        .filter(Attempt.quiz_id == quiz_id, Attempt.status == AttemptStatus.COMPLETED)
        .order_by(Attempt.total_score.desc())
        .all()
    )
    return [
        AttemptResultOut(
            student_id=user.id,
            student_name=user.full_name,
            score=attempt.total_score,
            submitted_at=attempt.submitted_at,
        )
        for attempt, user in rows
    ]


def analyze_quiz(db: Session, quiz: Quiz, ai: LessonAI) -> QuizAnalysisOut:
    class_session = quiz.class_session
    questions = list_questions(db, quiz.id)
    attempts = (
        db.query(Attempt)
        .filter(Attempt.quiz_id == quiz.id, Attempt.status == AttemptStatus.COMPLETED)
        .all()
    )
    attempt_ids = [attempt.id for attempt in attempts]
    answers = db.query(Answer).filter(Answer.attempt_id.in_(attempt_ids)).all() if attempt_ids else []
    enrolled = db.query(func.count(Enrollment.id)).filter(Enrollment.group_id == class_session.group_id).scalar() or 0

    stats = []
    for question in questions:
        given = [answer for answer in answers if answer.question_id == question.id]
        correct = sum(1 for answer in given if answer.is_correct)
        wrong = Counter(answer.submitted_text for answer in given if not answer.is_correct and answer.submitted_text)
        stats.append(
            QuestionStatsOut(
                question_id=question.id,
                question_text=question.text,
                concept=question.concept,
                total_answers=len(given),
                correct=correct,
                incorrect=len(given) - correct,
                percent_correct=score_percent(correct, len(given)),
                frequent_wrong_answers=[text for text, _ in wrong.most_common(3)],
            )
        )

    participation = score_percent(len(attempts), enrolled)
    group_average = score_percent(sum(item.correct for item in stats), sum(item.total_answers for item in stats))
    payload = {
        "quiz_kind": quiz.kind.value,
        "topic": class_session.topic,
        "grade": class_session.group.grade if class_session.group else None,
        "context": class_session.context or "",
        "questions": [
            {
                "id": question.id,
                "text": question.text,
                "concept": question.concept or "General",
                "correct_answer": question.correct_answer or "",
            }
            for question in questions
        ],
        "aggregated_answers": [item.model_dump() for item in stats],
        "metrics": {"participation": participation, "average": group_average},
    }
    return QuizAnalysisOut(
        quiz_id=quiz.id,
        participation=participation,
        group_average=group_average,
        questions=stats,
        ai=ai.recommend(quiz.kind.value, payload),
    )
