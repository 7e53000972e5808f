"""
Type-safe configuration for the workflow code generator using Pydantic Settings.

Values load from environment variables and an optional .env file. They only
supply defaults: per-call `CompileOptions` always win.

Usage:
    from shared.config import config

    if config.strict_mode:
        ...
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CodegenConfig(BaseSettings):
    """
    Central configuration for the compiler.

    Every field can be overridden with a `WORKFLOW_CODEGEN_`-prefixed
    environment variable, e.g. `WORKFLOW_CODEGEN_STRICT_MODE=false`.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WORKFLOW_CODEGEN_",
        extra="ignore",
        case_sensitive=False,
    )

    # ============================================================================
    # Compile option defaults
    # ============================================================================

    include_comments: bool = Field(default=True, description="Emit label comments into generated programs")
    strict_mode: bool = Field(default=True, description="Treat type-consistency problems as fatal errors")
    default_workflow_name: str = Field(default="Workflow", description="Workflow name used when a definition has none")

    # ============================================================================
    # Emission defaults
    # ============================================================================

    default_activity_timeout: str = Field(
        default="5 minutes",
        description="start_to_close_timeout attached to activities that declare no timeout"
    )
    default_phase_concurrency: int = Field(default=4, description="maxConcurrency of a concurrent phase that declares none")
    default_retry_attempts: int = Field(default=3, description="maxAttempts of a retry block that declares none")

    # ============================================================================
    # Continue-as-new defaults
    # ============================================================================

    default_max_history_events: int = Field(default=1000, description="History length that triggers continue-as-new")
    default_max_duration_ms: int = Field(
        default=86_400_000,
        description="Elapsed wall-clock milliseconds that trigger continue-as-new"
    )

    # ============================================================================
    # Logging
    # ============================================================================

    log_level: str = Field(default="INFO", description="Log level for compiler loggers")

    @field_validator("default_phase_concurrency", "default_retry_attempts", "default_max_history_events")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


config = CodegenConfig()
