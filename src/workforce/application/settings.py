"""
Runtime settings with environment variable support.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class WorkforceSettings(BaseSettings):
    """Settings for the CLI and factory, overridable via WORKFORCE_* variables."""

    config_dir: str = Field(default="configs", description="Directory with profile YAML files")
    profile: str = Field(default="dev", description="Profile to load")
    work_dir: str | None = Field(default=None, description="Overrides persistence.work_dir")
    log_level: str = Field(default="WARNING", description="Logging level")

    model_config = {
        "env_file": ".env",
        "env_prefix": "WORKFORCE_",
        "case_sensitive": False,
        "extra": "ignore",
    }
