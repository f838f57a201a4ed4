"""Configuration unifiee de l'assistant."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    """Flat set of options read at startup.

    Sources, by priority: constructor arguments, ``STREAMWITHAI_*`` environment
    variables, ``.env`` file, then ``streamwithai.json`` in the working directory.
    Durations are expressed in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="STREAMWITHAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        json_file="streamwithai.json",
        extra="ignore",
    )

    # Capture d'ecran
    capture_debounce: float = Field(0.5, ge=0.0)
    capture_quality: float = Field(0.8, gt=0.0, le=1.0)
    capture_max_width: int = Field(800, gt=0)
    capture_monitor: int = Field(1, ge=0)

    # Retry (IA, upload, reconnaissance)
    retry_attempts: int = Field(3, ge=1)
    retry_delay: float = Field(1.0, ge=0.0)

    # IA
    ai_relay_url: str = "http://127.0.0.1:8000/api/proxy"
    ai_timeout: float = Field(15.0, gt=0.0)
    ai_system_prompt: str = "Reponds en francais au message de user"
    max_history_length: int = Field(50, ge=1)

    # Upload d'images
    upload_enabled: bool = True
    upload_service_url: str = "https://tmpfiles.org/api/v1/upload"
    upload_timeout: float = Field(10.0, gt=0.0)
    upload_cache_size: int = Field(10, ge=1)
    upload_cache_ttl: float = Field(300.0, gt=0.0)

    # Reconnaissance vocale
    recognition_language: str = "fr-FR"
    auto_restart: bool = True
    auto_listen: bool = True
    auto_listen_delay: float = Field(1.0, ge=0.0)
    pause_input_while_speaking: bool = True
    asr_model: str = "small"
    asr_device: str = "cpu"
    asr_compute_type: str = "int8"
    vad_aggressiveness: int = Field(2, ge=0, le=3)
    input_device: str | None = None
    silence_duration: float = Field(0.8, gt=0.0)
    no_speech_timeout: float = Field(8.0, gt=0.0)
    max_utterance: float = Field(15.0, gt=0.0)

    # Synthese vocale
    synthesis_language: str = "fr-FR"
    synthesis_rate: float = Field(1.0, gt=0.0)
    synthesis_pitch: float = Field(1.0, gt=0.0)
    synthesis_volume: float = Field(1.0, ge=0.0, le=1.0)
    tts_models_dir: str = "resources/voices"
    tts_voices: dict[str, str] = {"fr-FR": "fr_FR-upmc-medium"}
    output_device: str | None = None

    # Relais HTTP
    relay_host: str = "127.0.0.1"
    relay_port: int = 8000
    ai_api_url: str | None = None
    cors_origins: list[str] = ["*"]
    max_request_bytes: int = 10 * 1024 * 1024
    relay_timeout: float = Field(15.0, gt=0.0)

    # Logs
    log_level: str = "INFO"
    log_dir: str | None = None
    log_rotate_mb: int = 5
    log_retention_days: int = 7
    console_max_messages: int = Field(100, ge=1)
    debug_events: bool = False

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
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def voice_for(self, language: str) -> str | None:
        """Return the Piper voice configured for ``language`` (exact, then prefix)."""
        if language in self.tts_voices:
            return self.tts_voices[language]
        prefix = language.split("-")[0].lower()
        for key, voice in self.tts_voices.items():
            if key.split("-")[0].lower() == prefix:
                return voice
        return None


@lru_cache()
def get_settings() -> Settings:
    """Retourne une instance de Settings mise en cache."""
    return Settings()
