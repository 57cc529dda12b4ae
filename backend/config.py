"""
Timewise - Configuration Management
Supports .env files and runtime configuration for AI, scheduling, tasks and integrations.
"""

from datetime import time
from typing import Dict, Any, List
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


# ============================================
# AI / LLM CONFIGURATION
# ============================================

class AIConfig(BaseSettings):
    """
    AI/LLM Configuration.
    Supports any OpenAI-compatible chat completions gateway.
    """
    api_base_url: str = Field(
        default="https://ai.gateway.lovable.dev/v1",
        description="Base URL for the OpenAI-compatible gateway"
    )
    api_key: str = Field(
        default="",
        description="API key for the LLM provider"
    )
    model_name: str = Field(
        default="google/gemini-2.5-flash",
        description="Model name to use for scheduling"
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for scheduling requests"
    )
    max_tokens: int = Field(
        default=4000,
        ge=100,
        le=16000,
        description="Maximum tokens in AI responses"
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Timeout for a single chat completion request"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request on rate limits and connection errors"
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="First backoff delay, doubled on every retry"
    )
    fallback_on_ai_error: bool = Field(
        default=True,
        description="Place every task with the fallback planner when the AI call fails"
    )

    model_config = {
        "env_prefix": "AI_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# SCHEDULE CONFIGURATION
# ============================================

class ScheduleConfig(BaseSettings):
    """Placement rules and default daily routine."""

    horizon_days: int = Field(
        default=7,
        ge=1,
        le=31,
        description="How many days ahead the model may place tasks"
    )
    buffer_minutes: int = Field(
        default=10,
        ge=0,
        le=120,
        description="Gap kept between a placed task and any other commitment"
    )
    fallback_search_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="How far the fallback planner searches for a free slot"
    )
    default_wake_time: time = Field(
        default=time(8, 0),
        description="Wake time used when the profile has none"
    )
    default_bed_time: time = Field(
        default=time(22, 0),
        description="Bed time used when the profile has none"
    )
    default_focus_duration: int = Field(
        default=60,
        ge=5,
        le=240,
        description="Ideal focus duration used when the profile has none"
    )
    date_only_default_time: time = Field(
        default=time(9, 0),
        description="Time given to a date-only suggestion"
    )
    fallback_score: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Score recorded for fallback placements"
    )
    suggestions_limit: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Pending suggestions returned to the dashboard"
    )

    model_config = {
        "env_prefix": "SCHEDULE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# TASK CONFIGURATION
# ============================================

class TaskConfig(BaseSettings):
    """Task lifecycle settings."""

    purge_after_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Soft-deleted tasks older than this are purged"
    )
    recurrence_default_weeks: int = Field(
        default=12,
        ge=1,
        le=52,
        description="Length of a recurring series without an end date"
    )
    max_occurrences: int = Field(
        default=366,
        ge=1,
        le=1000,
        description="Upper bound on rows created for one recurring series"
    )

    model_config = {
        "env_prefix": "TASK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# INTEGRATION CONFIGURATION
# ============================================

class GoogleCalendarConfig(BaseSettings):
    """Google Calendar import settings."""

    api_base_url: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Google Calendar REST endpoint"
    )
    sync_past_days: int = Field(
        default=30,
        ge=0,
        le=365,
        description="Import events starting this many days ago"
    )
    sync_future_days: int = Field(
        default=90,
        ge=1,
        le=730,
        description="Import events up to this many days ahead"
    )
    request_timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)

    model_config = {
        "env_prefix": "GOOGLE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


class CanvasConfig(BaseSettings):
    """Canvas LMS import settings."""

    api_token: str = Field(
        default="",
        description="Canvas API token"
    )
    allowed_domains: List[str] = Field(
        default_factory=lambda: ["instructure.com"],
        description="Canvas hosts must equal or be a subdomain of one of these"
    )
    default_duration_minutes: int = Field(default=60, ge=1, le=1440)
    task_color: str = Field(default="#dc2626")
    request_timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)

    model_config = {
        "env_prefix": "CANVAS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# SERVER CONFIGURATION
# ============================================

class ServerConfig(BaseSettings):
    """HTTP server settings."""

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:8080", "http://127.0.0.1:8080"],
        description="Origins allowed to call the API"
    )
    version: str = Field(default="1.0.0")

    model_config = {
        "env_prefix": "SERVER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_ai_config() -> AIConfig:
    """Get cached AI configuration instance."""
    return AIConfig()


@lru_cache()
def get_schedule_config() -> ScheduleConfig:
    """Get cached schedule configuration instance."""
    return ScheduleConfig()


@lru_cache()
def get_task_config() -> TaskConfig:
    """Get cached task configuration instance."""
    return TaskConfig()


@lru_cache()
def get_google_config() -> GoogleCalendarConfig:
    return GoogleCalendarConfig()


@lru_cache()
def get_canvas_config() -> CanvasConfig:
    return CanvasConfig()


@lru_cache()
def get_server_config() -> ServerConfig:
    return ServerConfig()


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_ai_config.cache_clear()
    get_schedule_config.cache_clear()
    get_task_config.cache_clear()
    get_google_config.cache_clear()
    get_canvas_config.cache_clear()
    get_server_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary() -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Secrets are reported only as present/absent.
    """
    ai = get_ai_config()
    schedule = get_schedule_config()
    tasks = get_task_config()
    google = get_google_config()
    canvas = get_canvas_config()

    return {
        "ai": {
            "base_url": ai.api_base_url,
            "model": ai.model_name,
            "has_key": bool(ai.api_key),
            "temperature": ai.temperature,
            "max_tokens": ai.max_tokens,
            "max_attempts": ai.max_attempts,
            "fallback_on_ai_error": ai.fallback_on_ai_error,
        },
        "schedule": {
            "horizon_days": schedule.horizon_days,
            "buffer_minutes": schedule.buffer_minutes,
            "fallback_search_days": schedule.fallback_search_days,
            "default_day": f"{schedule.default_wake_time:%H:%M} - {schedule.default_bed_time:%H:%M}",
            "fallback_score": schedule.fallback_score,
        },
        "tasks": {
            "purge_after_days": tasks.purge_after_days,
            "recurrence_default_weeks": tasks.recurrence_default_weeks,
            "max_occurrences": tasks.max_occurrences,
        },
        "integrations": {
            "google_calendar_window": [-google.sync_past_days, google.sync_future_days],
            "canvas_has_token": bool(canvas.api_token),
            "canvas_allowed_domains": canvas.allowed_domains,
        },
    }
