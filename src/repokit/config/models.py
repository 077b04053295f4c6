"""Configuration models."""

import shutil
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from repokit.config.exceptions import InvalidConfigurationError, MissingConfigurationError
from repokit.vcs.factory import VCSType

ENV_FILES = [".env.repokit", ".env"]


class RepoKitSettings(BaseSettings):
    """Settings shared by every repository backend."""

    hg_command: str = Field(default="hg", description="Mercurial executable")
    git_command: str = Field(default="git", description="Git executable")
    default_vcs: VCSType = Field(
        default=VCSType.GIT,
        description="VCS assumed when no repository marker is found",
    )
    temp_dir: Path | None = Field(
        default=None,
        description="Directory for temporary files (default: system temp directory)",
    )

    model_config = SettingsConfigDict(
        # later files take precedence
        env_file=ENV_FILES[::-1],
        env_file_encoding="utf-8",
        env_prefix="REPOKIT_",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(
        self,
        _env_file: str | Path | None = None,
        _settings_customise_sources_was_called: bool = False,
        **kwargs: Any,
    ) -> None:
        """Initialize settings.

        Args:
            _env_file: Optional path to custom env file (use env_file for public API)
            _settings_customise_sources_was_called: Internal flag
            **kwargs: Additional setting values

        Raises:
            InvalidConfigurationError: If an env file is specified but does not exist
        """
        env_file = kwargs.pop("env_file", _env_file)

        if env_file is not None:
            env_path = Path(env_file)
            if not env_path.exists():
                raise InvalidConfigurationError(f"Environment file not found: {env_file}")
            # settings_customise_sources reads it back from the init kwargs
            kwargs["_custom_env_file"] = env_path

        super().__init__(**kwargs)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use a custom env file in place of the default ones when given.

        Args:
            settings_cls: The settings class being instantiated
            init_settings: Settings from __init__ arguments
            env_settings: Settings from environment variables
            dotenv_settings: Settings from .env files
            file_secret_settings: Settings from secret files

        Returns:
            Tuple of settings sources in priority order
        """
        init_kwargs = init_settings.init_kwargs  # type: ignore[attr-defined]
        custom_env_path = init_kwargs.get("_custom_env_file")

        if custom_env_path is not None:
            custom_dotenv = DotEnvSettingsSource(
                settings_cls,
                env_file=custom_env_path,
                env_file_encoding="utf-8",
            )
            return (init_settings, custom_dotenv, env_settings, file_secret_settings)

        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @field_validator("default_vcs", mode="before")
    @classmethod
    def parse_default_vcs(cls, v: str | VCSType | None) -> VCSType:
        """Parse the VCS type from a string or enum.

        Args:
            v: VCS value (string, enum, or None)

        Returns:
            Parsed VCSType, git when unset

        Raises:
            InvalidConfigurationError: If the value is not a known VCS
        """
        if v is None:
            return VCSType.GIT
        if isinstance(v, VCSType):
            return v
        if isinstance(v, str):
            value = v.strip().lower()
            aliases = {"hg": VCSType.MERCURIAL}
            if value in aliases:
                return aliases[value]
            try:
                return VCSType(value)
            except ValueError as e:
                valid = [t.value for t in VCSType]
                raise InvalidConfigurationError(f"Invalid VCS: {v}. Valid options: {valid}") from e
        raise InvalidConfigurationError(f"Invalid VCS type: {type(v)}")

    @field_validator("temp_dir")
    @classmethod
    def validate_temp_dir(cls, v: Path | None) -> Path | None:
        """Require an existing directory for temporary files.

        Raises:
            InvalidConfigurationError: If the path is not a directory
        """
        if v is not None and not v.is_dir():
            raise InvalidConfigurationError(f"Temporary directory does not exist: {v}")
        return v

    def command_for(self, vcs_type: VCSType) -> str:
        """Locate the native executable of a VCS.

        Args:
            vcs_type: Backend type

        Returns:
            Absolute path of the executable

        Raises:
            MissingConfigurationError: If the executable cannot be found
        """
        command = self.hg_command if vcs_type == VCSType.MERCURIAL else self.git_command
        located = shutil.which(command)
        if located is None:
            raise MissingConfigurationError(f"{vcs_type.display_name} executable not found: {command}")
        return located

    @staticmethod
    def find_env_file() -> Path | None:
        """Find the environment file being used.

        Checks for .env.repokit and .env in current directory in that order.

        Returns:
            Path to the env file if found, None otherwise
        """
        for env_file in ENV_FILES:
            path = Path(env_file)
            if path.exists():
                return path.absolute()
        return None
