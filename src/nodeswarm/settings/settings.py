"""Application settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_name: str = "nodeswarm"

    # OpenAI-compatible LLM endpoint
    llm_api_base: str = "http://localhost:11434/v1"
    llm_model: str = "gemma3:27b"
    llm_api_key: str = "not-needed"
    llm_temperature: float = 0.7
    llm_max_tokens: Optional[int] = 4096
    llm_timeout_seconds: float = 120.0
    llm_input_cost_per_1k: float = 0.0
    llm_output_cost_per_1k: float = 0.0

    # Provider retry policy
    provider_max_attempts: int = 3
    provider_backoff_multiplier: float = 0.5
    provider_backoff_max_seconds: float = 8.0

    # Agent loop
    agent_max_turns: int = 20
    max_delegation_depth: int = 5
    delegation_lock_timeout_seconds: float = 300.0  # wait for a busy delegate
    parallel_tool_calls: bool = True
    tool_timeout_seconds: float = 60.0

    # Hooks
    hook_timeout_seconds: float = 30.0

    # Scheduler
    max_parallelism: Optional[int] = None  # None = unbounded
    fail_fast: bool = False
    node_timeout_seconds: Optional[float] = None
    execution_timeout_seconds: Optional[float] = None  # whole run

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # Path to log file (None disables file logging)
    log_file_level: str = "DEBUG"
    log_show_path: bool = True
    log_show_time: bool = True
    log_rich_tracebacks: bool = True
    log_file_rotation: str = "10 MB"
    log_file_retention: str = "7 days"
    log_file_compression: str = "zip"
    log_run_summary: bool = False  # Render a rich table after each run
