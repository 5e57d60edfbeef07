from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class AppConfig(BaseModel):
    """
    Configuration for general application settings.
    """
    log_file: str | None = None
    log_level: str = "INFO"


class ProcessingConfig(BaseModel):
    """
    Default filter settings used when a host does not supply its own.
    """
    filter_length: int = 512
    step_size: float = 0.05


class EngineConfig(BaseModel):
    """
    Configuration for the engine process and its chunk scheduler.
    """
    chunk_size: int = Field(default=4096, gt=0)  # samples per scheduling slice
    queue_maxsize: int = Field(default=64, gt=0)
    epsilon: float = Field(default=1e-6, gt=0.0)
    divergence_limit: float = Field(default=8.0, gt=1.0)
    ready_timeout: float = 10.0  # seconds


class CodecConfig(BaseModel):
    """
    Configuration for the output container.
    """
    bit_depth: Literal[16, 24] = 16


class Settings(BaseSettings):
    """
    Global application settings, aggregating all module configurations.
    """
    app: AppConfig = Field(default_factory=AppConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    codec: CodecConfig = Field(default_factory=CodecConfig)

    model_config = SettingsConfigDict(
        env_prefix="ECHOCLEAN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


_settings_instance = None


def load_settings(yaml_file: str | None = None) -> Settings:
    """
    Return the process-wide settings.
    An explicit *yaml_file* always builds a fresh instance from that file and caches it.
    """
    global _settings_instance
    if yaml_file is not None:
        settings_cls = type(
            "FileSettings",
            (Settings,),
            {"model_config": SettingsConfigDict(**{**Settings.model_config, "yaml_file": yaml_file})},
        )
        _settings_instance = settings_cls()
    elif _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next `load_settings()` re-reads every source."""
    global _settings_instance
    _settings_instance = None
