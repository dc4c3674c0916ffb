"""
Request and response shapes.

Each entity has a create shape (server fields omitted, defaults applied), a
partial update shape (every field optional, non-nullable columns reject an
explicit ``null``) and a search shape for its list endpoint. Search shapes
restrict ``sort_by`` to a fixed set of columns so nothing user-supplied is
ever spliced into SQL.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
)
from pydantic_core import PydanticCustomError


def _as_utc(value: datetime) -> datetime:
    # Naive values are taken to already be UTC (SQLite hands them back that way)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _reject_null(value):
    if value is None:
        raise PydanticCustomError("null_not_allowed", "Field may be omitted but cannot be null")
    return value


def _normalize_email(value):
    # Same normal form EmailStr stores at registration; anything unparsable
    # is left alone and simply won't match a stored address
    if not isinstance(value, str):
        return value
    try:
        return validate_email(value, check_deliverability=False).normalized
    except EmailNotValidError:
        return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
NotNull = BeforeValidator(_reject_null)
LookupEmail = Annotated[str, BeforeValidator(_normalize_email)]

Name = Annotated[str, Field(min_length=1, max_length=255)]
Password = Annotated[str, Field(min_length=8, max_length=255)]
PriorityText = Annotated[str, Field(min_length=1, max_length=50)]
ColorCode = Annotated[str, Field(min_length=1, max_length=32)]

PASSWORD_ALIASES = AliasChoices("password", "password_credential", "password_hash")


class SortOrder(str, Enum):
    asc = "asc"
    desc = "desc"


class Theme(str, Enum):
    light = "light"
    dark = "dark"
    creative = "creative"


class DefaultView(str, Enum):
    list = "list"
    board = "board"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class Page(BaseModel):
    limit: int = Field(default=10, gt=0, le=100)
    offset: int = Field(default=0, ge=0)
    sort_order: SortOrder = SortOrder.desc


class MessageResponse(BaseModel):
    message: str


# --- Users & auth ---

class UserRegister(BaseModel):
    email: EmailStr
    name: Name
    password: Password = Field(validation_alias=PASSWORD_ALIASES)


class UserLogin(BaseModel):
    # Not EmailStr: a malformed address is just a failed login
    email: LookupEmail
    password: str


class RecoverRequest(BaseModel):
    email: Annotated[LookupEmail, Field(min_length=1)]


class UserUpdate(BaseModel):
    email: Annotated[Optional[EmailStr], NotNull] = None
    name: Annotated[Optional[Name], NotNull] = None
    password: Annotated[Optional[Password], NotNull] = Field(default=None, validation_alias=PASSWORD_ALIASES)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    created_at: UtcDatetime


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserRead


# --- Preferences ---

class PreferenceUpdate(BaseModel):
    user_id: Optional[str] = None
    theme: Annotated[Optional[Theme], NotNull] = None
    default_view: Annotated[Optional[DefaultView], NotNull] = None
    email_notifications: Annotated[Optional[bool], NotNull] = None
    in_app_notifications: Annotated[Optional[bool], NotNull] = None


class PreferenceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    theme: Theme
    default_view: DefaultView
    email_notifications: bool
    in_app_notifications: bool


# --- Tasks ---

class TaskCreate(BaseModel):
    user_id: Optional[str] = None
    name: Name
    description: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    priority: PriorityText = "low"
    category_id: Optional[str] = None
    is_completed: bool = False


class TaskUpdate(BaseModel):
    user_id: Optional[str] = None
    name: Annotated[Optional[Name], NotNull] = None
    description: Optional[str] = None
    due_date: Optional[UtcDatetime] = None
    priority: Annotated[Optional[PriorityText], NotNull] = None
    category_id: Optional[str] = None
    is_completed: Annotated[Optional[bool], NotNull] = None


class TaskSearch(Page):
    user_id: Optional[str] = None
    query: Optional[str] = None
    sort_by: Literal["name", "due_date", "priority", "created_at", "updated_at"] = "created_at"
    priority: Optional[Priority] = None
    is_completed: Optional[bool] = None
    category_id: Optional[str] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    description: Optional[str]
    due_date: Optional[UtcDatetime]
    priority: str
    category_id: Optional[str]
    is_completed: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


# --- Categories ---

class CategoryCreate(BaseModel):
    user_id: Optional[str] = None
    name: Name
    color_code: ColorCode


class CategoryUpdate(BaseModel):
    user_id: Optional[str] = None
    name: Annotated[Optional[Name], NotNull] = None
    color_code: Annotated[Optional[ColorCode], NotNull] = None


class CategorySearch(Page):
    user_id: Optional[str] = None
    query: Optional[str] = None
    sort_by: Literal["name", "created_at", "updated_at"] = "created_at"


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str
    color_code: str
    created_at: UtcDatetime
    updated_at: UtcDatetime


# --- Task reminders ---

class ReminderCreate(BaseModel):
    task_id: str
    reminder_time: UtcDatetime


class ReminderUpdate(BaseModel):
    task_id: Annotated[Optional[str], NotNull] = None
    reminder_time: Annotated[Optional[UtcDatetime], NotNull] = None


class ReminderSearch(Page):
    task_id: Optional[str] = None
    reminder_time: Optional[UtcDatetime] = None
    sort_by: Literal["reminder_time"] = "reminder_time"


class ReminderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    reminder_time: UtcDatetime


class ErrorDetail(BaseModel):
    field: str
    constraint: str
    detail: str


class ErrorResponse(BaseModel):
    message: str
    errors: List[ErrorDetail] = []
