import os
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    secret_key: str
    algorithm: str = "HS256"
    # Tokens live for 7 days
    access_token_expire_minutes: int = 60 * 24 * 7
    database_url: str = "sqlite:///./taskminder.db"
    sql_echo: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    """
    Builds the settings from the environment (and a .env file, if present).
    """
    secret_key = os.getenv("SECRET_KEY")
    if not secret_key:
        raise ValueError("SECRET_KEY environment variable not set.")

    origins = os.getenv("CORS_ORIGINS", "*")
    return Settings(
        secret_key=secret_key,
        algorithm=os.getenv("ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./taskminder.db"),
        sql_echo=_as_bool(os.getenv("SQL_ECHO", "false")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
    )
