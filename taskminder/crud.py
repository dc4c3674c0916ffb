"""
Persistence operations, one per (entity, verb).

Partial updates and list queries are driven by the declarative tables below
rather than per-endpoint code: ``UPDATABLE_FIELDS`` says which columns a
partial update may touch, ``SORT_COLUMNS`` maps the allowed ``sort_by``
values onto real columns and ``SEARCH_COLUMNS`` names the column the free-text
``query`` matches against.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type

from sqlalchemy import asc, desc
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from taskminder.errors import ConflictError, NotFoundError, ValidationError
from taskminder.models import Category, Task, TaskReminder, User, UserPreference, new_id, utcnow
from taskminder.schemas import CategorySearch, Page, ReminderSearch, TaskSearch
from taskminder.security import get_password_hash

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: Dict[Type[SQLModel], Tuple[str, ...]] = {
    User: ("email", "name", "hashed_password"),
    UserPreference: ("theme", "default_view", "email_notifications", "in_app_notifications"),
    Task: ("name", "description", "due_date", "priority", "category_id", "is_completed"),
    Category: ("name", "color_code"),
    TaskReminder: ("task_id", "reminder_time"),
}

SORT_COLUMNS = {
    Task: {
        "name": Task.name,
        "due_date": Task.due_date,
        "priority": Task.priority,
        "created_at": Task.created_at,
        "updated_at": Task.updated_at,
    },
    Category: {
        "name": Category.name,
        "created_at": Category.created_at,
        "updated_at": Category.updated_at,
    },
    TaskReminder: {
        "reminder_time": TaskReminder.reminder_time,
    },
}

SEARCH_COLUMNS = {
    Task: Task.name,
    Category: Category.name,
}


# --- Generic helpers ---

def advance_timestamp(previous: Optional[datetime]) -> datetime:
    """
    Returns "now", nudged past ``previous`` when the clock has not moved on,
    so that ``updated_at`` strictly increases on every write.
    """
    now = utcnow()
    if previous is None:
        return now
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def check_owner_echo(user_id: Optional[str], owner_id: str) -> None:
    """
    Bodies and queries may echo ``user_id``; it has to name the caller.
    """
    if user_id is not None and user_id != owner_id:
        raise ValidationError(
            "user_id does not match the authenticated user",
            errors=[{"field": "user_id", "constraint": "format", "detail": "Must be the authenticated user's id"}],
        )


def select_changes(model: Type[SQLModel], changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keeps only the fields ``model`` allows a partial update to change.
    Raises ValidationError when nothing is left.
    """
    allowed = UPDATABLE_FIELDS[model]
    selected = {
        field: value.value if isinstance(value, Enum) else value
        for field, value in changes.items()
        if field in allowed
    }
    if not selected:
        raise ValidationError("No valid fields to update")
    return selected


def commit(db: Session, conflict_message: str = "Resource already exists") -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("Integrity error on commit: %s", exc.orig)
        raise ConflictError(conflict_message) from exc


def apply_changes(db: Session, entity: SQLModel, changes: Dict[str, Any], conflict_message: str = "Resource already exists") -> SQLModel:
    """
    Applies an already filtered change-set to a loaded entity and re-reads it.

    Only the assigned attributes end up in the UPDATE's SET clause.
    """
    for field, value in changes.items():
        setattr(entity, field, value)
    if hasattr(entity, "updated_at"):
        entity.updated_at = advance_timestamp(entity.updated_at)
    db.add(entity)
    commit(db, conflict_message)
    db.refresh(entity)
    return entity


def insert(db: Session, entity: SQLModel, conflict_message: str = "Resource already exists") -> SQLModel:
    db.add(entity)
    commit(db, conflict_message)
    db.refresh(entity)
    return entity


def remove(db: Session, entity: SQLModel) -> None:
    db.delete(entity)
    db.commit()


def build_list_query(
    model: Type[SQLModel],
    params: Page,
    scope: Sequence[Any],
    filters: Iterable[Tuple[Any, Any]] = (),
    query: Optional[str] = None,
    joins: Sequence[Tuple[Type[SQLModel], Any]] = (),
):
    """
    Builds the owner-scoped, filtered, sorted and paginated SELECT for a list
    endpoint.

    ``scope`` holds the owner predicates, ``filters`` are ``(column, value)``
    equality pairs applied in order when the value is not None, and ``query``
    is matched as a substring of the model's search column. The sort column
    comes from ``SORT_COLUMNS``; limit and offset are bound integers.
    """
    sort_columns = SORT_COLUMNS[model]
    if params.sort_by not in sort_columns:
        raise ValidationError(
            "Invalid sort column",
            errors=[{"field": "sort_by", "constraint": "enum", "detail": f"Must be one of {sorted(sort_columns)}"}],
        )
    direction = asc if params.sort_order.value == "asc" else desc

    statement = select(model)
    for target, on_clause in joins:
        statement = statement.join(target, on_clause)
    statement = statement.where(*scope)
    if query:
        statement = statement.where(SEARCH_COLUMNS[model].contains(query, autoescape=True))
    for column, value in filters:
        if value is not None:
            statement = statement.where(column == (value.value if isinstance(value, Enum) else value))
    return (
        statement.order_by(direction(sort_columns[params.sort_by]), direction(model.id))
        .offset(params.offset)
        .limit(params.limit)
    )


# --- Users ---

def create_user(db: Session, email: str, name: str, password: str) -> User:
    """
    Inserts the user and their default preferences in one transaction.
    A duplicate email trips the unique constraint and becomes a ConflictError.
    """
    user = User(
        id=new_id(),
        email=email,
        name=name,
        hashed_password=get_password_hash(password),
        created_at=utcnow(),
    )
    db.add(user)
    # Flush the user first so the preference row's foreign key resolves
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("User with this email already exists") from exc
    db.add(UserPreference(user_id=user.id))
    return insert(db, user, conflict_message="User with this email already exists")


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.exec(select(User).where(User.email == email)).first()


def update_user(db: Session, user_id: str, changes: Dict[str, Any]) -> User:
    changes = dict(changes)
    if changes.get("password") is not None:
        changes["hashed_password"] = get_password_hash(changes.pop("password"))
    selected = select_changes(User, changes)
    user = get_user(db, user_id)
    return apply_changes(db, user, selected, conflict_message="User with this email already exists")


# --- Preferences ---

def get_preferences(db: Session, user_id: str) -> UserPreference:
    """
    Returns the user's preferences, creating the default row if it is missing.
    """
    preferences = db.get(UserPreference, user_id)
    if preferences is None:
        logger.info("Creating default preferences for user %s", user_id)
        preferences = insert(db, UserPreference(user_id=user_id))
    return preferences


def update_preferences(db: Session, user_id: str, changes: Dict[str, Any]) -> UserPreference:
    selected = select_changes(UserPreference, changes)
    preferences = get_preferences(db, user_id)
    return apply_changes(db, preferences, selected)


# --- Categories ---

def create_category(db: Session, owner_id: str, name: str, color_code: str) -> Category:
    now = utcnow()
    category = Category(
        id=new_id(),
        user_id=owner_id,
        name=name,
        color_code=color_code,
        created_at=now,
        updated_at=now,
    )
    return insert(db, category)


def get_category(db: Session, owner_id: str, category_id: str) -> Category:
    category = db.exec(
        select(Category).where(Category.id == category_id, Category.user_id == owner_id)
    ).first()
    if category is None:
        raise NotFoundError("Category not found")
    return category


def list_categories(db: Session, owner_id: str, params: CategorySearch) -> List[Category]:
    statement = build_list_query(
        Category,
        params,
        scope=[Category.user_id == owner_id],
        query=params.query,
    )
    return list(db.exec(statement).all())


def update_category(db: Session, owner_id: str, category_id: str, changes: Dict[str, Any]) -> Category:
    selected = select_changes(Category, changes)
    category = get_category(db, owner_id, category_id)
    return apply_changes(db, category, selected)


def delete_category(db: Session, owner_id: str, category_id: str) -> None:
    remove(db, get_category(db, owner_id, category_id))


# --- Tasks ---

def create_task(
    db: Session,
    owner_id: str,
    name: str,
    description: Optional[str] = None,
    due_date: Optional[datetime] = None,
    priority: str = "low",
    category_id: Optional[str] = None,
    is_completed: bool = False,
) -> Task:
    if category_id is not None:
        get_category(db, owner_id, category_id)
    now = utcnow()
    task = Task(
        id=new_id(),
        user_id=owner_id,
        name=name,
        description=description,
        due_date=due_date,
        priority=priority,
        category_id=category_id,
        is_completed=is_completed,
        created_at=now,
        updated_at=now,
    )
    return insert(db, task)


def get_task(db: Session, owner_id: str, task_id: str) -> Task:
    task = db.exec(select(Task).where(Task.id == task_id, Task.user_id == owner_id)).first()
    if task is None:
        raise NotFoundError("Task not found")
    return task


def list_tasks(db: Session, owner_id: str, params: TaskSearch) -> List[Task]:
    statement = build_list_query(
        Task,
        params,
        scope=[Task.user_id == owner_id],
        query=params.query,
        filters=[
            (Task.priority, params.priority),
            (Task.is_completed, params.is_completed),
            (Task.category_id, params.category_id),
        ],
    )
    return list(db.exec(statement).all())


def update_task(db: Session, owner_id: str, task_id: str, changes: Dict[str, Any]) -> Task:
    selected = select_changes(Task, changes)
    task = get_task(db, owner_id, task_id)
    if selected.get("category_id") is not None:
        get_category(db, owner_id, selected["category_id"])
    return apply_changes(db, task, selected)


def delete_task(db: Session, owner_id: str, task_id: str) -> None:
    remove(db, get_task(db, owner_id, task_id))


# --- Task reminders ---

def create_reminder(db: Session, owner_id: str, task_id: str, reminder_time: datetime) -> TaskReminder:
    get_task(db, owner_id, task_id)
    reminder = TaskReminder(id=new_id(), task_id=task_id, reminder_time=reminder_time)
    return insert(db, reminder)


def get_reminder(db: Session, owner_id: str, reminder_id: str) -> TaskReminder:
    reminder = db.exec(
        select(TaskReminder)
        .join(Task, Task.id == TaskReminder.task_id)
        .where(TaskReminder.id == reminder_id, Task.user_id == owner_id)
    ).first()
    if reminder is None:
        raise NotFoundError("Reminder not found")
    return reminder


def list_reminders(db: Session, owner_id: str, params: ReminderSearch) -> List[TaskReminder]:
    statement = build_list_query(
        TaskReminder,
        params,
        scope=[Task.user_id == owner_id],
        joins=[(Task, Task.id == TaskReminder.task_id)],
        filters=[
            (TaskReminder.task_id, params.task_id),
            (TaskReminder.reminder_time, params.reminder_time),
        ],
    )
    return list(db.exec(statement).all())


def update_reminder(db: Session, owner_id: str, reminder_id: str, changes: Dict[str, Any]) -> TaskReminder:
    selected = select_changes(TaskReminder, changes)
    reminder = get_reminder(db, owner_id, reminder_id)
    if "task_id" in selected:
        get_task(db, owner_id, selected["task_id"])
    return apply_changes(db, reminder, selected)


def delete_reminder(db: Session, owner_id: str, reminder_id: str) -> None:
    remove(db, get_reminder(db, owner_id, reminder_id))
