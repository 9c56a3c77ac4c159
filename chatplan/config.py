"""
ChatPlan — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from chatplan/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Semantic retrieval (OpenAI embeddings)
    OPENAI_API_KEY: str = ""
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    RETRIEVAL_TOP_K: int = 8

    # SQLite (members, schedule events, plans, passages)
    DATABASE_PATH: str = "data/chatplan.db"

    # Scheduling
    TIMEZONE: str = "UTC"
    SCHEDULING_HORIZON_DAYS: int = 365
    DEFAULT_MEETING_MINUTES: int = 60
    MAX_MEETING_MINUTES: int = 480
    EARLIEST_AVAILABLE_HOUR: int = 9
    WORKDAY_END_HOUR: int = 17
    AVAILABILITY_SEARCH_DAYS: int = 14

    # Plan pipeline input bounds
    PLAN_QUERY_MIN_LENGTH: int = 10
    PLAN_QUERY_MAX_LENGTH: int = 1000

    @field_validator(
        "RETRIEVAL_TOP_K",
        "SCHEDULING_HORIZON_DAYS",
        "DEFAULT_MEETING_MINUTES",
        "MAX_MEETING_MINUTES",
        "EARLIEST_AVAILABLE_HOUR",
        "WORKDAY_END_HOUR",
        "AVAILABILITY_SEARCH_DAYS",
        "PLAN_QUERY_MIN_LENGTH",
        "PLAN_QUERY_MAX_LENGTH",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("EARLIEST_AVAILABLE_HOUR", "WORKDAY_END_HOUR")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {v}")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        EMBEDDING_MODEL=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        RETRIEVAL_TOP_K=os.getenv("RETRIEVAL_TOP_K", "8"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/chatplan.db"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        SCHEDULING_HORIZON_DAYS=os.getenv("SCHEDULING_HORIZON_DAYS", "365"),
        DEFAULT_MEETING_MINUTES=os.getenv("DEFAULT_MEETING_MINUTES", "60"),
        MAX_MEETING_MINUTES=os.getenv("MAX_MEETING_MINUTES", "480"),
        EARLIEST_AVAILABLE_HOUR=os.getenv("EARLIEST_AVAILABLE_HOUR", "9"),
        WORKDAY_END_HOUR=os.getenv("WORKDAY_END_HOUR", "17"),
        AVAILABILITY_SEARCH_DAYS=os.getenv("AVAILABILITY_SEARCH_DAYS", "14"),
        PLAN_QUERY_MIN_LENGTH=os.getenv("PLAN_QUERY_MIN_LENGTH", "10"),
        PLAN_QUERY_MAX_LENGTH=os.getenv("PLAN_QUERY_MAX_LENGTH", "1000"),
    )


# Singleton, imported by all other modules as:
#   from chatplan.config import settings
settings = _load_settings()
