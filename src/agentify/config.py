"""Configuration settings for the application."""

import logging
from pathlib import Path

from pydantic import (
    BaseModel,
    ConfigDict,
)
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    API_URL: str | None = None  # Used by the CLI client; defaults to localhost:API_PORT
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    ENVIRONMENT: str = "development"  # Options: development, test, production

    # Output locations
    OUTPUT_DIR: str = "./public/output"
    SERVERLESS_OUTPUT_DIR: str = "/tmp/agentify-output"
    TEMPLATE_DIR: str | None = None  # Defaults to the templates shipped with the package
    KEEP_WORKDIRS: bool = False

    # Serverless indicators, set by the hosting platform
    NETLIFY: str | None = None
    VERCEL: str | None = None
    AWS_LAMBDA_FUNCTION_NAME: str | None = None

    # Concurrency and timeouts
    MAX_CONCURRENT_COMPILES: int = 4
    MAX_CONCURRENT_BUILDS: int = 2
    MAX_TRACKED_COMPILATIONS: int = 256  # handles kept in memory by the API
    BUILD_TIMEOUT_FLOOR: float = 1.0  # seconds
    TOOL_PROBE_TIMEOUT: float = 5.0  # seconds
    INSTALL_TIMEOUT: float = 600.0  # seconds

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_serverless(self) -> bool:
        return bool(self.NETLIFY or self.VERCEL or self.AWS_LAMBDA_FUNCTION_NAME)


class ExecutionEnvironment(BaseModel):
    """
    Where the orchestrator writes output and whether it may install missing tools.

    Built once from :class:`Settings` and handed to the orchestrator, so nothing below the entry
    points reads environment variables.
    """

    model_config = ConfigDict(frozen=True)

    output_root: Path
    allow_tool_install: bool = False

    @property
    def work_root(self) -> Path:
        return self.output_root / "work"

    @property
    def log_root(self) -> Path:
        return self.output_root / "logs"

    @classmethod
    def from_settings(cls, config: Settings) -> "ExecutionEnvironment":
        """
        Resolve the output root and install policy from *config*.

        Serverless platforms only allow writes below ``/tmp``, so their output goes to
        ``SERVERLESS_OUTPUT_DIR``.  The same directory is the fallback when the configured output
        directory cannot be created.
        """
        fallback = Path(config.SERVERLESS_OUTPUT_DIR)
        output_root = fallback if config.is_serverless else Path(config.OUTPUT_DIR)
        try:
            output_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Could not create output directory %s: %s", output_root, exc)
            output_root = fallback
            output_root.mkdir(parents=True, exist_ok=True)

        return cls(output_root=output_root.resolve(), allow_tool_install=not config.is_production)


settings = Settings()
