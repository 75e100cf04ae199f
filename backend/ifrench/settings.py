from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Service-account credential document (issuer email + private key)
	credentials_file: Path | None = Field(default=None, validation_alias="GOOGLE_APPLICATION_CREDENTIALS")
	token_uri: str = Field(default="https://oauth2.googleapis.com/token", validation_alias="GOOGLE_TOKEN_URI")
	token_scope: str = Field(default="https://www.googleapis.com/auth/cloud-platform", validation_alias="GOOGLE_SCOPE")
	# Lifetime requested in the signed assertion
	assertion_lifetime_seconds: int = Field(default=3600, validation_alias="GOOGLE_ASSERTION_LIFETIME")

	# Object storage used as the recognizer's input
	storage_upload_base_url: str = Field(default="https://storage.googleapis.com/upload/storage/v1", validation_alias="GCS_UPLOAD_BASE_URL")
	storage_bucket: str = Field(default="ifrench", validation_alias="GCS_BUCKET")

	# Long-running speech recognition
	speech_recognize_url: str = Field(default="https://speech.googleapis.com/v1p1beta1/speech:longrunningrecognize", validation_alias="SPEECH_RECOGNIZE_URL")
	speech_operations_url: str = Field(default="https://speech.googleapis.com/v1p1beta1/operations", validation_alias="SPEECH_OPERATIONS_URL")
	speech_encoding: str = Field(default="MP3", validation_alias="SPEECH_ENCODING")
	speech_sample_rate_hertz: int = Field(default=44100, validation_alias="SPEECH_SAMPLE_RATE")
	speech_language_code: str = Field(default="fr-FR", validation_alias="SPEECH_LANGUAGE_CODE")
	speech_model: str = Field(default="default", validation_alias="SPEECH_MODEL")
	speech_audio_channel_count: int = Field(default=2, validation_alias="SPEECH_AUDIO_CHANNELS")
	speech_poll_attempts: int = Field(default=30, validation_alias="SPEECH_POLL_ATTEMPTS")
	speech_poll_interval: float = Field(default=2.0, validation_alias="SPEECH_POLL_INTERVAL")
	# "constant" or "exponential"
	speech_poll_backoff: str = Field(default="constant", validation_alias="SPEECH_POLL_BACKOFF")

	# Generative completion endpoint used for question writing
	deepseek_api_key: str | None = Field(default=None, validation_alias="DEEPSEEK_API_KEY")
	deepseek_base_url: str = Field(default="https://api.deepseek.com/v1", validation_alias="DEEPSEEK_BASE_URL")
	deepseek_model: str = Field(default="text-generation", validation_alias="DEEPSEEK_MODEL")
	completion_max_tokens: int = Field(default=1000, validation_alias="COMPLETION_MAX_TOKENS")
	completion_temperature: float = Field(default=0.7, validation_alias="COMPLETION_TEMPERATURE")
	completion_top_p: float = Field(default=0.9, validation_alias="COMPLETION_TOP_P")
	completion_timeout: float = Field(default=60.0, validation_alias="COMPLETION_TIMEOUT")

	# Durable audio storage
	audio_storage_dir: Path = Field(default=Path("storage/audio"), validation_alias="AUDIO_STORAGE_DIR")
	download_timeout: float = Field(default=120.0, validation_alias="DOWNLOAD_TIMEOUT")
	video_platform_hosts: List[str] = Field(
		default=["youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be"],
		validation_alias="VIDEO_PLATFORM_HOSTS",
	)

	# Learning stats persistence
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

settings = Settings()
