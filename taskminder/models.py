from typing import Optional
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class User(SQLModel, table=True):
    """
    A registered account. ``email`` is unique at the storage layer; duplicate
    registrations surface as integrity errors on commit.
    """
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True, nullable=False)
    name: str = Field(max_length=255, nullable=False)
    hashed_password: str = Field(nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)


class UserPreference(SQLModel, table=True):
    __tablename__ = "user_preferences"

    user_id: str = Field(primary_key=True, foreign_key="users.id", ondelete="CASCADE")
    theme: str = Field(default="light", max_length=20, nullable=False)
    default_view: str = Field(default="list", max_length=20, nullable=False)
    email_notifications: bool = Field(default=True, nullable=False)
    in_app_notifications: bool = Field(default=True, nullable=False)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False, foreign_key="users.id", ondelete="CASCADE")
    name: str = Field(max_length=255, nullable=False)
    color_code: str = Field(max_length=32, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False, foreign_key="users.id", ondelete="CASCADE")
    name: str = Field(max_length=255, nullable=False)
    description: Optional[str] = Field(default=None)
    due_date: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    priority: str = Field(default="low", max_length=50, nullable=False)
    # Deleting a category keeps its tasks, uncategorized
    category_id: Optional[str] = Field(default=None, foreign_key="categories.id", ondelete="SET NULL")
    is_completed: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), nullable=False)


class TaskReminder(SQLModel, table=True):
    __tablename__ = "task_reminders"

    id: str = Field(default_factory=new_id, primary_key=True)
    task_id: str = Field(index=True, nullable=False, foreign_key="tasks.id", ondelete="CASCADE")
    reminder_time: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
