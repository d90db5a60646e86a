import os
import shutil
import sys
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_app_path() -> str:
    """Absolute path of the running executable, with forward slashes"""
    executable = shutil.which(sys.argv[0]) or sys.argv[0] or sys.executable
    return os.path.abspath(executable).replace("\\", "/")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KEYWARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="keyward", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment mode"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log output format", validate_default=True
    )

    database_url: str = Field(
        default="sqlite:///./keyward.db", description="Key registry database URL"
    )

    # authorized_keys settings
    ssh_dir: Path = Field(
        default_factory=lambda: Path.home() / ".ssh",
        description="Directory holding the authorized_keys file",
    )
    authorized_keys_name: str = Field(
        default="authorized_keys", description="Name of the access-control file"
    )
    app_path: str = Field(
        default_factory=_default_app_path,
        description="Executable invoked by the forced command of every key",
    )
    config_path: str = Field(
        default="custom/conf/app.ini",
        description="Config file passed to the forced command",
    )

    # Key inspection settings
    ssh_keygen_path: str = Field(default="ssh-keygen", description="Path to ssh-keygen")
    oracle_timeout: float = Field(
        default=10.0, gt=0, description="Seconds to wait for ssh-keygen"
    )
    skip_key_type_check: Optional[bool] = Field(
        default=None,
        description="Skip the key size check (defaults to on for Windows)",
    )

    @field_validator("log_format", mode="before")
    @classmethod
    def validate_log_format(cls, v, info):
        if info.data.get("environment") == "production":
            return "json"
        return v

    @field_validator("app_path", mode="before")
    @classmethod
    def validate_app_path(cls, v):
        return str(v).replace("\\", "/")

    @property
    def is_windows(self) -> bool:
        return os.name == "nt"

    @property
    def key_type_check_disabled(self) -> bool:
        if self.skip_key_type_check is None:
            return self.is_windows
        return self.skip_key_type_check

    @property
    def authorized_keys_path(self) -> Path:
        return self.ssh_dir / self.authorized_keys_name


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
