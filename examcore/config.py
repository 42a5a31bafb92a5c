"""
Centralized Configuration for examcore

Settings are read from environment variables (prefix ``EXAMCORE_``) and an
optional ``.env`` file, with validated defaults for every timing and policy
knob used by sessions, the session store, and the records database.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="EXAMCORE_",
        env_file=".env",
        extra="ignore",
    )

    # Storage locations
    persist_dir: str = "./data/sessions"
    document_dir: str = "./data/assessments"
    database_url: str = "sqlite:///./examcore.db"
    sql_echo: bool = False

    # Session timing (seconds)
    purge_retention_seconds: float = Field(default=600.0, ge=0)
    instructions_idle_seconds: float = Field(default=3600.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    start_timer_on_realization: bool = True

    # Proctoring codes
    code_length: int = Field(default=6, ge=4, le=16)
    code_prune_interval_seconds: float = Field(default=120.0, ge=0)

    # Scoring policy
    repeat_leniency_threshold: int = Field(default=2, ge=1)
    repeat_leniency_enabled: bool = True
    grant_unvalidated_outcomes: bool = True
    unvalidated_code: str = "U"
    guest_student_ids: List[str] = ["GUEST", "AACTUTOR"]
    practice_student_ids: List[str] = ["ETEXT"]
    test_student_prefix: Optional[str] = "99"

    # Administrative controls
    admin_role: str = "ADMINISTRATOR"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    @field_validator('log_level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator('unvalidated_code')
    @classmethod
    def validate_unvalidated_code(cls, v):
        if len(v) != 1:
            raise ValueError("unvalidated_code must be a single character")
        return v

    def unrecorded_reason(self, student_id: str) -> Optional[str]:
        """Why completions for this student identity are not recorded, or None if they are."""
        if student_id in self.guest_student_ids:
            return "Guest login exams will not be recorded."
        if student_id in self.practice_student_ids:
            return "Practice exams will not be recorded."
        if self.test_student_prefix and student_id.startswith(self.test_student_prefix):
            return "Test student exams will not be recorded."
        return None

    def is_recorded_student(self, student_id: str) -> bool:
        return self.unrecorded_reason(student_id) is None


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
