"""Configuration management for markcdn."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic.alias_generators import to_camel

from markcdn.constants import (
    CONFIG_ENV_VAR,
    CONFIG_FILENAME,
    DECODING_VALUES,
    DEFAULT_BACKGROUND_COLOR,
    DEFAULT_CDN_BASE_URL,
    DEFAULT_DECODING,
    DEFAULT_IMAGE_OPERATIONS,
    DEFAULT_LINK_IMAGES_TO_ORIGINAL,
    DEFAULT_LOADING,
    DEFAULT_MARKDOWN_CAPTIONS,
    DEFAULT_MAX_WIDTH,
    DEFAULT_PUBLIC_DIR,
    DEFAULT_SHOW_CAPTIONS,
    DEFAULT_WRAPPER_STYLE,
    LOADING_VALUES,
)


class EnvVarNotFoundError(ValueError):
    """Raised when an environment variable referenced by env: syntax is not found."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name
        super().__init__(f"Environment variable not found: {var_name}")


def resolve_env_value(value: str, strict: bool = True) -> str | None:
    """Resolve env:VAR_NAME syntax to actual environment variable value.

    Args:
        value: The value to resolve. If starts with "env:", looks up environment variable.
        strict: If True, raises EnvVarNotFoundError when variable not found.
                If False, returns None when variable not found.

    Returns:
        The resolved value, or None if env var not found and strict=False.

    Raises:
        EnvVarNotFoundError: If strict=True and environment variable not found.
    """
    if isinstance(value, str) and value.startswith("env:"):
        env_var = value[4:]
        env_value = os.environ.get(env_var)
        if env_value is None:
            if strict:
                raise EnvVarNotFoundError(env_var)
            return None
        return env_value
    return value


CaptionSource = Literal["title", "alt"]


class ImagesConfig(BaseModel):
    """Image rewriting options.

    Field names are snake_case; the camelCase spelling of every option
    (``maxWidth``, ``srcSetBreakpoints``, ...) is accepted as well.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    max_width: int | float = DEFAULT_MAX_WIDTH
    wrapper_style: str | dict[str, str] = DEFAULT_WRAPPER_STYLE
    background_color: str = DEFAULT_BACKGROUND_COLOR
    link_images_to_original: bool = DEFAULT_LINK_IMAGES_TO_ORIGINAL
    show_captions: bool | list[CaptionSource] = DEFAULT_SHOW_CAPTIONS
    markdown_captions: bool = DEFAULT_MARKDOWN_CAPTIONS
    loading: str = DEFAULT_LOADING
    decoding: str = DEFAULT_DECODING
    disable_bg_image_on_alpha: bool = False
    disable_bg_image: bool = False
    src_set_breakpoints: list[int | float] | None = None
    sizes: str | None = None
    image_operations: dict[str, str | int | None] = Field(
        default_factory=lambda: dict(DEFAULT_IMAGE_OPERATIONS)
    )
    pubkey: str | None = None
    secret_key: SecretStr | None = None
    cdn_base_url: str = DEFAULT_CDN_BASE_URL
    public_dir: str = DEFAULT_PUBLIC_DIR
    path_prefix: str = ""

    @field_validator("pubkey", "secret_key", mode="before")
    @classmethod
    def _resolve_env(cls, value: Any) -> Any:
        if isinstance(value, str):
            return resolve_env_value(value, strict=False)
        return value

    @field_validator("loading")
    @classmethod
    def _check_loading(cls, value: str) -> str:
        if value not in LOADING_VALUES:
            logger.warning(
                f'{value} is an invalid value for the loading option. '
                f'Please pass one of "lazy", "eager" or "auto".'
            )
        return value

    @field_validator("decoding")
    @classmethod
    def _check_decoding(cls, value: str) -> str:
        if value not in DECODING_VALUES:
            logger.warning(
                f'{value} is an invalid value for the decoding option. '
                f'Please pass one of "async", "sync" or "auto".'
            )
        return value

    def caption_sources(self) -> list[CaptionSource]:
        """Ordered attributes a caption may be taken from."""
        if isinstance(self.show_captions, list):
            return list(self.show_captions)
        return ["title", "alt"] if self.show_captions else []

    def wrapper_style_css(self) -> str:
        """The wrapper style as an inline CSS string."""
        if isinstance(self.wrapper_style, dict):
            return " ".join(f"{k}: {v};" for k, v in self.wrapper_style.items())
        return self.wrapper_style

    def get_secret_key(self) -> str | None:
        return self.secret_key.get_secret_value() if self.secret_key else None

    def public_dump(self) -> dict[str, Any]:
        """Options safe to expose publicly (the secret key is stripped)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"secret_key"})


class ConfigManager:
    """Configuration manager for loading the options file."""

    CONFIG_FILENAME = CONFIG_FILENAME
    DEFAULT_USER_CONFIG_DIR = Path.home() / ".markcdn"

    def __init__(self) -> None:
        self._config: ImagesConfig | None = None
        self._config_path: Path | None = None

    @property
    def config(self) -> ImagesConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    @property
    def config_path(self) -> Path | None:
        """Get the path of the loaded configuration file."""
        return self._config_path

    def load(
        self,
        config_path: Path | str | None = None,
        env_override: bool = True,
        **overrides: Any,
    ) -> ImagesConfig:
        """
        Load configuration from file with fallback chain.

        Priority (highest to lowest):
        1. Explicit config_path parameter
        2. MARKCDN_CONFIG environment variable
        3. ./markcdn.json (current directory)
        4. ~/.markcdn/config.json (user directory)
        5. Default values

        Keyword overrides (non-None values) are applied on top.
        """
        config_data: dict[str, Any] = {}

        resolved_path = self._resolve_config_path(config_path, env_override)
        if resolved_path and resolved_path.exists():
            config_data = self._load_json(resolved_path)
            self._config_path = resolved_path

        config = ImagesConfig.model_validate(config_data)
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            config = ImagesConfig.model_validate(
                {**config.model_dump(exclude_unset=True), **updates}
            )
        self._config = config
        return self._config

    def _resolve_config_path(
        self,
        config_path: Path | str | None,
        env_override: bool,
    ) -> Path | None:
        """Resolve configuration file path based on priority."""
        if config_path:
            return Path(config_path)

        if env_override:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            if env_path:
                return Path(env_path)

        cwd_config = Path.cwd() / self.CONFIG_FILENAME
        if cwd_config.exists():
            return cwd_config

        user_config = self.DEFAULT_USER_CONFIG_DIR / "config.json"
        if user_config.exists():
            return user_config

        return None

    def _load_json(self, path: Path) -> dict[str, Any]:
        """Load JSON configuration file."""
        with open(path, encoding="utf-8") as f:
            return json.load(f)
