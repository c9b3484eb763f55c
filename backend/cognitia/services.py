import logging
import re

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .models import (
    ClassSession,
    ClassStatus,
    Enrollment,
    Feedback,
    FeedbackKind,
    Group,
    GuardianLink,
    GuardianRelation,
    PlanTopic,
    User,
    UserRole,
)
from .security import create_access_token, hash_password, verify_password


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

CLASS_TRANSITIONS = {
    ClassStatus.DRAFT: {ClassStatus.GUIDE_READY, ClassStatus.SCHEDULED},
    ClassStatus.GUIDE_READY: {ClassStatus.DRAFT, ClassStatus.SCHEDULED},
    ClassStatus.SCHEDULED: {ClassStatus.GUIDE_READY, ClassStatus.IN_CLASS},
    ClassStatus.IN_CLASS: {ClassStatus.COMPLETED},
    ClassStatus.COMPLETED: set(),
}


def _normalize_email(value: str) -> str:
    normalized = value.lower().strip()
    if not EMAIL_PATTERN.match(normalized):
        raise HTTPException(status_code=400, detail="Invalid email format")
    return normalized


# --- users ---

def login_user(db: Session, *, email: str, password: str) -> tuple[str, User]:
    user = db.query(User).filter(User.email == _normalize_email(email)).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.warning(f"Login failed for {email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return create_access_token(user_id=user.id, role=user.role.value), user


def create_user(db: Session, *, email: str, full_name: str, raw_password: str, role: UserRole) -> User:
    email = _normalize_email(email)
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="Email already exists")

    user = User(email=email, full_name=full_name.strip(), password_hash=hash_password(raw_password), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {user.id}")
    return user


def list_users(db: Session, role: UserRole | None = None) -> list[User]:
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    return query.order_by(User.full_name).all()


def get_user_with_role(db: Session, user_id: int, role: UserRole) -> User:
    user = db.get(User, user_id)
    if not user or user.role != role:
        raise HTTPException(status_code=404, detail=f"{role.value.capitalize()} not found")
    return user


def link_guardian(db: Session, *, guardian_id: int, student_id: int, relation: GuardianRelation) -> GuardianLink:
    get_user_with_role(db, guardian_id, UserRole.GUARDIAN)
    get_user_with_role(db, student_id, UserRole.STUDENT)
    link = GuardianLink(guardian_id=guardian_id, student_id=student_id, relation=relation)
    db.add(link)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Guardian already linked to student") from exc
    db.refresh(link)
    return link


def linked_students(db: Session, guardian: User) -> list[GuardianLink]:
    return db.query(GuardianLink).filter(GuardianLink.guardian_id == guardian.id).all()


def ensure_guardian_of(db: Session, guardian: User, student_id: int) -> None:
    if guardian.role == UserRole.ADMIN:
        return
    link = (
        db.query(GuardianLink)
        .filter(GuardianLink.guardian_id == guardian.id, GuardianLink.student_id == student_id)
        .first()
    )
    if not link:
        raise HTTPException(status_code=403, detail="Student is not linked to this guardian")


def seed_default_users(db: Session) -> None:
    email = settings.seed_admin_email
    if db.query(User).filter(User.email == email).first():
        return
    db.add(
        User(
            email=email,
            full_name="Administrator",
            role=UserRole.ADMIN,
            password_hash=hash_password(settings.seed_password),
            is_active=True,
        )
    )
    db.commit()
    logger.info(f"Seeded default admin {email}")


# --- groups ---

def create_group(db: Session, *, name: str, grade: str | None, section: str | None, teacher_id: int | None) -> Group:
    if teacher_id is not None:
        get_user_with_role(db, teacher_id, UserRole.TEACHER)
    group = Group(name=name.strip(), grade=grade, section=section, teacher_id=teacher_id)
    db.add(group)
    db.commit()
    db.refresh(group)
    return group


def list_groups(db: Session, actor: User) -> list[Group]:
    query = db.query(Group)
    if actor.role == UserRole.TEACHER:
        query = query.filter(Group.teacher_id == actor.id)
    return query.order_by(Group.name).all()


def get_group(db: Session, group_id: int) -> Group:
    group = db.get(Group, group_id)
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def ensure_group_access(group: Group, actor: User) -> None:
    if actor.role == UserRole.ADMIN:
        return
    if actor.role != UserRole.TEACHER or group.teacher_id != actor.id:
        raise HTTPException(status_code=403, detail="Group belongs to another teacher")


def enroll_student(db: Session, *, group_id: int, student_id: int) -> Enrollment:
    get_group(db, group_id)
    get_user_with_role(db, student_id, UserRole.STUDENT)
    enrollment = Enrollment(group_id=group_id, student_id=student_id)
    db.add(enrollment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Student already enrolled") from exc
    db.refresh(enrollment)
    return enrollment


def student_group_ids(db: Session, student_id: int) -> list[int]:
    rows = db.query(Enrollment.group_id).filter(Enrollment.student_id == student_id).all()
    return [row[0] for row in rows]


# --- class sessions ---

def _check_topic(db: Session, topic_id: int | None) -> None:
    if topic_id is not None and db.get(PlanTopic, topic_id) is None:
        raise HTTPException(status_code=404, detail="Plan topic not found")


def schedule_class(db: Session, *, actor: User, **fields) -> ClassSession:
    group = get_group(db, fields["group_id"])
    ensure_group_access(group, actor)
    _check_topic(db, fields.get("topic_id"))
    class_session = ClassSession(**fields)
    if class_session.scheduled_at is not None:
        class_session.status = ClassStatus.SCHEDULED
    db.add(class_session)
    db.commit()
    db.refresh(class_session)
    logger.info(f"Scheduled class {class_session.id} for group {group.id}")
    return class_session


def list_classes(db: Session, actor: User, group_id: int | None = None) -> list[ClassSession]:
    query = db.query(ClassSession).join(Group, ClassSession.group_id == Group.id)
    if group_id is not None:
        query = query.filter(ClassSession.group_id == group_id)
    if actor.role == UserRole.TEACHER:
        query = query.filter(Group.teacher_id == actor.id)
    return query.order_by(ClassSession.scheduled_at.is_(None), ClassSession.scheduled_at).all()


def get_class(db: Session, class_id: int, actor: User) -> ClassSession:
    class_session = db.get(ClassSession, class_id)
    if not class_session:
        raise HTTPException(status_code=404, detail="Class not found")
    ensure_group_access(class_session.group, actor)
    return class_session


def change_class_status(class_session: ClassSession, new_status: ClassStatus) -> None:
    if new_status == class_session.status:
        return
    if new_status not in CLASS_TRANSITIONS[class_session.status]:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot move class from {class_session.status.value} to {new_status.value}",
        )
    class_session.status = new_status


def update_class(db: Session, class_session: ClassSession, changes: dict) -> ClassSession:
    new_status = changes.pop("status", None)
    _check_topic(db, changes.get("topic_id"))
    for key, value in changes.items():
        setattr(class_session, key, value)
    if new_status is not None:
        change_class_status(class_session, new_status)
    db.commit()
    db.refresh(class_session)
    return class_session


# --- feedback ---

def create_feedback(db: Session, *, actor: User, class_session: ClassSession, kind: FeedbackKind,
                    student_id: int | None, content: str, strengths: list[str], areas_to_improve: list[str],
                    recommendations: list[str]) -> Feedback:
    if kind == FeedbackKind.INDIVIDUAL:
        if student_id is None:
            raise HTTPException(status_code=400, detail="Individual feedback needs a student")
        if class_session.group_id not in student_group_ids(db, student_id):
            raise HTTPException(status_code=400, detail="Student is not enrolled in this class group")
    elif student_id is not None:
        raise HTTPException(status_code=400, detail="Group feedback cannot target a student")

    feedback = Feedback(
        class_session_id=class_session.id,
        student_id=student_id,
        author_id=actor.id,
        kind=kind,
        content=content.strip(),
        strengths=[item.strip() for item in strengths if item.strip()],
        areas_to_improve=[item.strip() for item in areas_to_improve if item.strip()],
        recommendations=[item.strip() for item in recommendations if item.strip()],
    )
    db.add(feedback)
    db.commit()
    db.refresh(feedback)
    logger.info(f"Created {kind.value} feedback {feedback.id} for class {class_session.id}")
    return feedback


def list_class_feedback(db: Session, class_session: ClassSession, *, student_id: int | None = None,
                        kind: FeedbackKind | None = None) -> list[Feedback]:
    query = db.query(Feedback).filter(Feedback.class_session_id == class_session.id)
    if student_id is not None:
        query = query.filter(Feedback.student_id == student_id)
    if kind is not None:
        query = query.filter(Feedback.kind == kind)
    return query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()


def student_feedback(db: Session, student_id: int) -> list[Feedback]:
    """Individual feedback for the student plus group feedback on classes of the student's groups."""
    group_ids = student_group_ids(db, student_id)
    query = db.query(Feedback).join(ClassSession, Feedback.class_session_id == ClassSession.id)
    individual = Feedback.student_id == student_id
    if group_ids:
        shared = (Feedback.kind == FeedbackKind.GROUP) & ClassSession.group_id.in_(group_ids)
        query = query.filter(individual | shared)
    else:
        query = query.filter(individual)
    return query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()
