import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskminder import crud
from taskminder.auth import (
    RecoveryNotifier,
    authenticate_user,
    get_app_settings,
    get_current_user,
    get_notifier,
    recover_account,
    register_user,
)
from taskminder.config import Settings, get_settings
from taskminder.database import Database, get_session
from taskminder.errors import AppError, NotFoundError, ValidationError
from taskminder.models import User
from taskminder.schemas import (
    AuthResponse,
    CategoryCreate,
    CategoryRead,
    CategorySearch,
    CategoryUpdate,
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    PreferenceRead,
    PreferenceUpdate,
    RecoverRequest,
    ReminderCreate,
    ReminderRead,
    ReminderSearch,
    ReminderUpdate,
    TaskCreate,
    TaskRead,
    TaskSearch,
    TaskUpdate,
    UserLogin,
    UserRead,
    UserRegister,
    UserUpdate,
)

logger = logging.getLogger(__name__)


def constraint_for(error_type: str) -> str:
    """
    Folds a pydantic error type into one of required/type/format/range/enum.
    """
    if error_type in ("missing", "null_not_allowed"):
        return "required"
    if error_type in ("enum", "literal_error"):
        return "enum"
    if error_type.startswith(("greater_than", "less_than")) or error_type.endswith(("too_short", "too_long")):
        return "range"
    if error_type in ("value_error", "string_pattern_mismatch") or error_type.startswith(("datetime", "date", "time")):
        return "format"
    return "type"


def validation_details(exc: RequestValidationError) -> List[ErrorDetail]:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ())]
        field = ".".join(location[1:]) or ".".join(location)
        details.append(ErrorDetail(field=field, constraint=constraint_for(error["type"]), detail=error["msg"]))
    return details


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    notifier: Optional[RecoveryNotifier] = None,
) -> FastAPI:
    """
    Creates and configures the FastAPI application.

    ``settings``, ``database`` and ``notifier`` default to ones built from the
    environment; tests pass their own.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    database = database or Database(settings.database_url, echo=settings.sql_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init()
        yield
        database.dispose()

    app = FastAPI(
        title="Taskminder",
        description="Personal task management API: tasks, categories, reminders and preferences.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.notifier = notifier or RecoveryNotifier()

    # --- Middleware Configuration ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    # --- Error Handlers ---
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        body = ErrorResponse(message=exc.message)
        if isinstance(exc, ValidationError):
            body.errors = [ErrorDetail(**error) for error in exc.errors]
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_defaults=True))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        body = ErrorResponse(message="Validation failed", errors=validation_details(exc))
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": "Internal server error"})

    # --- API Endpoints ---
    @app.get("/", response_model=MessageResponse)
    def read_root():
        return {"message": "Taskminder API is running"}

    # Auth
    @app.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
    def register(
        user_in: UserRegister,
        db: Session = Depends(get_session),
        settings: Settings = Depends(get_app_settings),
    ):
        token, user = register_user(db, settings, email=user_in.email, name=user_in.name, password=user_in.password)
        return {"token": token, "user": user}

    @app.post("/auth/login", response_model=AuthResponse)
    def login(
        credentials: UserLogin,
        db: Session = Depends(get_session),
        settings: Settings = Depends(get_app_settings),
    ):
        token, user = authenticate_user(db, settings, credentials.email, credentials.password)
        return {"token": token, "user": user}

    @app.post("/auth/recover", response_model=MessageResponse)
    def recover(
        body: RecoverRequest,
        db: Session = Depends(get_session),
        notifier: RecoveryNotifier = Depends(get_notifier),
    ):
        return {"message": recover_account(db, notifier, body.email)}

    @app.get("/auth/me", response_model=UserRead)
    def read_me(current_user: User = Depends(get_current_user)):
        return current_user

    # Users
    @app.get("/users/{user_id}", response_model=UserRead)
    def read_user(user_id: str, current_user: User = Depends(get_current_user)):
        if user_id != current_user.id:
            raise NotFoundError("User not found")
        return current_user

    @app.put("/users/{user_id}", response_model=UserRead)
    def update_user(
        user_id: str,
        user_update: UserUpdate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        changes = user_update.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No valid fields to update")
        if user_id != current_user.id:
            raise NotFoundError("User not found")
        return crud.update_user(db, user_id, changes)

    # Preferences
    @app.get("/preferences", response_model=PreferenceRead)
    def read_preferences(current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        return crud.get_preferences(db, current_user.id)

    @app.put("/preferences", response_model=PreferenceRead)
    def update_preferences(
        preference_update: PreferenceUpdate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(preference_update.user_id, current_user.id)
        return crud.update_preferences(db, current_user.id, preference_update.model_dump(exclude_unset=True))

    # Tasks
    @app.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
    def create_task(task_in: TaskCreate, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        crud.check_owner_echo(task_in.user_id, current_user.id)
        return crud.create_task(db, current_user.id, **task_in.model_dump(exclude={"user_id"}))

    @app.get("/tasks", response_model=List[TaskRead])
    def list_tasks(
        params: Annotated[TaskSearch, Query()],
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(params.user_id, current_user.id)
        return crud.list_tasks(db, current_user.id, params)

    @app.get("/tasks/{task_id}", response_model=TaskRead)
    def get_task(task_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        return crud.get_task(db, current_user.id, task_id)

    @app.put("/tasks/{task_id}", response_model=TaskRead)
    def update_task(
        task_id: str,
        task_update: TaskUpdate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(task_update.user_id, current_user.id)
        return crud.update_task(db, current_user.id, task_id, task_update.model_dump(exclude_unset=True))

    @app.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_task(task_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        crud.delete_task(db, current_user.id, task_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Categories
    @app.post("/categories", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
    def create_category(
        category_in: CategoryCreate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(category_in.user_id, current_user.id)
        return crud.create_category(db, current_user.id, name=category_in.name, color_code=category_in.color_code)

    @app.get("/categories", response_model=List[CategoryRead])
    def list_categories(
        params: Annotated[CategorySearch, Query()],
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(params.user_id, current_user.id)
        return crud.list_categories(db, current_user.id, params)

    @app.get("/categories/{category_id}", response_model=CategoryRead)
    def get_category(category_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        return crud.get_category(db, current_user.id, category_id)

    @app.put("/categories/{category_id}", response_model=CategoryRead)
    def update_category(
        category_id: str,
        category_update: CategoryUpdate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        crud.check_owner_echo(category_update.user_id, current_user.id)
        return crud.update_category(db, current_user.id, category_id, category_update.model_dump(exclude_unset=True))

    @app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_category(category_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        crud.delete_category(db, current_user.id, category_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Task reminders
    @app.post("/task_reminders", response_model=ReminderRead, status_code=status.HTTP_201_CREATED)
    def create_reminder(
        reminder_in: ReminderCreate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        return crud.create_reminder(db, current_user.id, reminder_in.task_id, reminder_in.reminder_time)

    @app.get("/task_reminders", response_model=List[ReminderRead])
    def list_reminders(
        params: Annotated[ReminderSearch, Query()],
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        return crud.list_reminders(db, current_user.id, params)

    @app.get("/task_reminders/{reminder_id}", response_model=ReminderRead)
    def get_reminder(reminder_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        return crud.get_reminder(db, current_user.id, reminder_id)

    @app.put("/task_reminders/{reminder_id}", response_model=ReminderRead)
    def update_reminder(
        reminder_id: str,
        reminder_update: ReminderUpdate,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_session),
    ):
        return crud.update_reminder(db, current_user.id, reminder_id, reminder_update.model_dump(exclude_unset=True))

    @app.delete("/task_reminders/{reminder_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_reminder(reminder_id: str, current_user: User = Depends(get_current_user), db: Session = Depends(get_session)):
        crud.delete_reminder(db, current_user.id, reminder_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("taskminder.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
