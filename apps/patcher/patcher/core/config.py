from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PATCHER_DIR = Path.home() / ".local" / "bin" / "opencode-patcher-tools"
CONFIG_FILENAME = "patches.config.yaml"


def _expand(value: Optional[object]) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(str(value)).expanduser()


class Settings(BaseSettings):
    """Patcher settings loaded from environment variables.

    Every path the engine touches is derived here and passed down
    explicitly; nothing below the CLI reads the current directory.

    Environment variables
    ─────────────────────
    • OPENCODE_PATCHER_DIR         tools installation root
    • OPENCODE_DIR                 target tree (upstream working copy)
    • PATCHER_CONFIG_FILE          patch declarations (YAML)
    • PATCHER_PATCHES_DIR          directory holding *.patch artifacts
    • PATCHER_GIT_TIMEOUT_SECONDS  per git invocation

    Unset paths default to locations under OPENCODE_PATCHER_DIR.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    opencode_patcher_dir: Path = DEFAULT_PATCHER_DIR
    opencode_dir: Optional[Path] = None
    patcher_config_file: Optional[Path] = None
    patcher_patches_dir: Optional[Path] = None

    # Applies to each git subprocess; the engine itself never times out.
    patcher_git_timeout_seconds: float = 120.0

    # Console renderer when true, JSON lines otherwise.
    debug: bool = True

    @field_validator(
        "opencode_patcher_dir",
        "opencode_dir",
        "patcher_config_file",
        "patcher_patches_dir",
        mode="before",
    )
    @classmethod
    def expand_user(cls, v):
        return _expand(v)

    @model_validator(mode="after")
    def fill_derived_paths(self) -> "Settings":
        root = self.opencode_patcher_dir
        if self.opencode_dir is None:
            self.opencode_dir = root / "opencode"
        if self.patcher_config_file is None:
            self.patcher_config_file = root / CONFIG_FILENAME
        if self.patcher_patches_dir is None:
            self.patcher_patches_dir = root / "patches"
        return self

    @field_validator("patcher_git_timeout_seconds")
    @classmethod
    def positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("git timeout must be positive")
        return v


def get_settings() -> Settings:
    return Settings()
