import logging
import math

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    AnnualPlan,
    ClassSession,
    ClassStatus,
    Group,
    PlanCourse,
    PlanStatus,
    PlanTopic,
    TeacherAssignment,
    User,
    UserRole,
)
from .quiz_session import score_percent
from .schemas import (
    AssignmentOut,
    CourseProgressOut,
    PlanCourseOut,
    PlanDetailOut,
    PlanOut,
    TeacherCurriculumOut,
    TermProgressOut,
    TopicProgressOut,
)
from .services import get_group, get_user_with_role


logger = logging.getLogger(__name__)

ACTIVE_CLASS_STATES = {ClassStatus.GUIDE_READY, ClassStatus.SCHEDULED, ClassStatus.IN_CLASS}


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _mean(values: list[int]) -> int:
    return _round(sum(values) / len(values)) if values else 0


# --- annual plans ---

def _topic_ids(plan: AnnualPlan) -> list[int]:
    return [topic.id for course in plan.courses for topic in course.topics]


def _coverage(db: Session, plan: AnnualPlan) -> int:
    """Share of the plan's topics with at least one completed class."""
    if plan.status == PlanStatus.PENDING:
        return 0
    topic_ids = _topic_ids(plan)
    if not topic_ids:
        return 0
    covered = (
        db.query(func.count(func.distinct(ClassSession.topic_id)))
        .filter(ClassSession.topic_id.in_(topic_ids), ClassSession.status == ClassStatus.COMPLETED)
        .scalar()
        or 0
    )
    return score_percent(covered, len(topic_ids))


def plan_out(db: Session, plan: AnnualPlan) -> PlanOut:
    return PlanOut(
        id=plan.id,
        grade=plan.grade,
        school_year=plan.school_year,
        status=plan.status,
        description=plan.description,
        is_base=plan.is_base,
        course_count=len(plan.courses),
        topic_count=len(_topic_ids(plan)),
        coverage=_coverage(db, plan),
    )


def plan_detail(db: Session, plan: AnnualPlan) -> PlanDetailOut:
    return PlanDetailOut(
        **plan_out(db, plan).model_dump(),
        courses=[PlanCourseOut.model_validate(course) for course in plan.courses],
    )


def create_plan(db: Session, *, actor: User, **fields) -> AnnualPlan:
    plan = AnnualPlan(created_by=actor.id, **fields)
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info(f"Created annual plan {plan.id} for grade {plan.grade} ({plan.school_year})")
    return plan


def list_plans(db: Session, school_year: str | None = None) -> list[AnnualPlan]:
    query = db.query(AnnualPlan)
    if school_year:
        query = query.filter(AnnualPlan.school_year == school_year)
    return query.order_by(AnnualPlan.grade, AnnualPlan.id).all()


def get_plan(db: Session, plan_id: int) -> AnnualPlan:
    plan = db.get(AnnualPlan, plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan


def update_plan(db: Session, plan: AnnualPlan, changes: dict) -> AnnualPlan:
    for key, value in changes.items():
        setattr(plan, key, value)
    db.commit()
    db.refresh(plan)
    return plan


def delete_plan(db: Session, plan: AnnualPlan) -> None:
    course_ids = [course.id for course in plan.courses]
    topic_ids = _topic_ids(plan)
    assigned = course_ids and db.query(TeacherAssignment.id).filter(TeacherAssignment.course_id.in_(course_ids)).first()
    taught = topic_ids and db.query(ClassSession.id).filter(ClassSession.topic_id.in_(topic_ids)).first()
    if assigned or taught:
        raise HTTPException(status_code=409, detail="Plan is in use by assignments or classes")
    db.delete(plan)
    db.commit()
    logger.info(f"Deleted annual plan {plan.id}")


def duplicate_plan(db: Session, plan: AnnualPlan, actor: User) -> AnnualPlan:
    copy = AnnualPlan(
        grade=plan.grade,
        school_year=plan.school_year,
        status=PlanStatus.DRAFT,
        description=f"{plan.description} (Copy)" if plan.description else None,
        is_base=False,
        created_by=actor.id,
    )
    for course in plan.courses:
        copy.courses.append(
            PlanCourse(
                name=course.name,
                description=course.description,
                objectives=course.objectives,
                weekly_hours=course.weekly_hours,
                position=course.position,
                topics=[
                    PlanTopic(
                        name=topic.name,
                        term=topic.term,
                        position=topic.position,
                        estimated_sessions=topic.estimated_sessions,
                        objectives=topic.objectives,
                        description=topic.description,
                    )
                    for topic in course.topics
                ],
            )
        )
    db.add(copy)
    db.commit()
    db.refresh(copy)
    logger.info(f"Duplicated annual plan {plan.id} as {copy.id}")
    return copy


# --- courses and topics ---

def add_course(db: Session, plan: AnnualPlan, **fields) -> PlanCourse:
    if not fields.get("position"):
        last = db.query(func.max(PlanCourse.position)).filter(PlanCourse.plan_id == plan.id).scalar()
        fields["position"] = (last or 0) + 1
    course = PlanCourse(plan_id=plan.id, **fields)
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def get_course(db: Session, course_id: int) -> PlanCourse:
    course = db.get(PlanCourse, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def add_topic(db: Session, course: PlanCourse, **fields) -> PlanTopic:
    if not fields.get("position"):
        last = db.query(func.max(PlanTopic.position)).filter(PlanTopic.course_id == course.id).scalar()
        fields["position"] = (last or 0) + 1
    topic = PlanTopic(course_id=course.id, **fields)
    db.add(topic)
    db.commit()
    db.refresh(topic)
    return topic


# --- teacher assignments ---

def assignment_out(assignment: TeacherAssignment) -> AssignmentOut:
    return AssignmentOut(
        id=assignment.id,
        teacher_id=assignment.teacher_id,
        teacher_name=assignment.teacher.full_name,
        course_id=assignment.course_id,
        course_name=assignment.course.name,
        weekly_hours=assignment.course.weekly_hours,
        group_id=assignment.group_id,
        group_name=assignment.group.name,
        school_year=assignment.school_year,
    )


def create_assignment(db: Session, *, teacher_id: int, course_id: int, group_id: int,
                      school_year: str) -> TeacherAssignment:
    get_user_with_role(db, teacher_id, UserRole.TEACHER)
    get_course(db, course_id)
    get_group(db, group_id)
    assignment = TeacherAssignment(
        teacher_id=teacher_id, course_id=course_id, group_id=group_id, school_year=school_year
    )
    db.add(assignment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Assignment already exists") from exc
    db.refresh(assignment)
    logger.info(f"Assigned teacher {teacher_id} to course {course_id} for group {group_id} ({school_year})")
    return assignment


def list_assignments(db: Session, actor: User, school_year: str | None = None) -> list[TeacherAssignment]:
    query = db.query(TeacherAssignment)
    if actor.role == UserRole.TEACHER:
        query = query.filter(TeacherAssignment.teacher_id == actor.id)
    if school_year:
        query = query.filter(TeacherAssignment.school_year == school_year)
    return query.order_by(TeacherAssignment.school_year.desc(), TeacherAssignment.id).all()


def delete_assignment(db: Session, assignment_id: int) -> None:
    assignment = db.get(TeacherAssignment, assignment_id)
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    db.delete(assignment)
    db.commit()


# --- teacher progress ---

def _topic_progress(topic: PlanTopic, classes: list[ClassSession]) -> TopicProgressOut:
    status, progress = "pending", 0
    completed = sum(1 for item in classes if item.status == ClassStatus.COMPLETED)
    active = sum(1 for item in classes if item.status in ACTIVE_CLASS_STATES)
    if classes and completed == len(classes):
        status, progress = "completed", 100
    elif active or completed:
        status, progress = "in_progress", score_percent(completed, len(classes))
    return TopicProgressOut(
        id=topic.id,
        name=topic.name,
        course_id=topic.course_id,
        term=topic.term,
        position=topic.position,
        estimated_sessions=topic.estimated_sessions,
        objectives=topic.objectives,
        status=status,
        progress=progress,
        sessions=len(classes),
    )


def _terms(topics: list[TopicProgressOut]) -> list[TermProgressOut]:
    by_term: dict[int, list[TopicProgressOut]] = {}
    for topic in topics:
        by_term.setdefault(topic.term or 1, []).append(topic)
    return [
        TermProgressOut(
            number=number,
            name=f"Term {number}",
            progress=_mean([topic.progress for topic in items]),
            topic_ids=[topic.id for topic in items],
        )
        for number, items in sorted(by_term.items())
    ]


def teacher_curriculum(db: Session, teacher: User, school_year: str | None = None) -> TeacherCurriculumOut:
    """Topics of the teacher's assigned courses with progress derived from their classes."""
    assignments = list_assignments(db, teacher, school_year)
    group_ids = {assignment.group_id for assignment in assignments}
    classes = (
        db.query(ClassSession)
        .filter(ClassSession.group_id.in_(group_ids), ClassSession.topic_id.is_not(None))
        .all()
        if group_ids
        else []
    )
    classes_by_topic: dict[int, list[ClassSession]] = {}
    for item in classes:
        classes_by_topic.setdefault(item.topic_id, []).append(item)

    courses: list[CourseProgressOut] = []
    seen: set[int] = set()
    for assignment in assignments:
        course = assignment.course
        if course.id in seen:
            continue
        seen.add(course.id)
        ordered = sorted(course.topics, key=lambda topic: (topic.term is not None, topic.term or 0, topic.position))
        topics = [_topic_progress(topic, classes_by_topic.get(topic.id, [])) for topic in ordered]
        completed = sum(1 for topic in topics if topic.status == "completed")
        group: Group = assignment.group
        courses.append(
            CourseProgressOut(
                id=course.id,
                name=course.name,
                weekly_hours=course.weekly_hours,
                progress=score_percent(completed, len(topics)),
                group_id=group.id,
                group_name=group.name,
                topics=topics,
                terms=_terms(topics),
            )
        )

    return TeacherCurriculumOut(
        courses=courses,
        total_topics=sum(len(course.topics) for course in courses),
        completed_topics=sum(1 for course in courses for topic in course.topics if topic.status == "completed"),
        assigned_courses=len(courses),
        overall_progress=_mean([course.progress for course in courses]),
    )
