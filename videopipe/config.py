from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.host_config import get_hostname_settings_file


class Settings(BaseSettings):
    # Filstier
    source_directory: str = "Input"
    output_directory: str = "Output"
    quarantine_directory: str = "Failed"

    # Batch processing
    batch_size: int = 5  # Max pending jobs pulled per dispatch round
    concurrency_limit: int = 3  # Max simultaneous calls to the processing service
    batch_yield_seconds: float = 0.1  # Pause between batches to avoid a busy loop
    auto_start: bool = True  # Start dispatching when the application starts

    # Retry
    retry_count: int = 3  # Max attempts per job, including the first
    retry_delay_seconds: float = 5.0  # Linear back-off base: delay = base * attempt

    # Graceful stop. None = wait for in-flight jobs without a bound
    stop_drain_timeout_seconds: Optional[float] = None

    # Processing service client, as "package.module:ClassName"
    processing_client_class: str = ""

    # Source disposition
    delete_attempts: int = 3
    delete_backoff_seconds: float = 0.25  # Sleep base * attempt between delete attempts
    quarantine_copy_chunk_kb: int = 2048  # Chunk size for cross-device quarantine copy

    # Logging konfiguration
    log_level: str = "INFO"
    log_file_path: str = "logs/videopipe.log"
    log_retention_days: int = 30

    model_config = SettingsConfigDict(env_file=get_hostname_settings_file())

    @field_validator("batch_size", "concurrency_limit", "retry_count", "delete_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("retry_delay_seconds", "batch_yield_seconds", "delete_backoff_seconds")
    @classmethod
    def _not_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("stop_drain_timeout_seconds")
    @classmethod
    def _optional_not_negative(cls, value: Optional[float]) -> Optional[float]:
        # None betyder ubegrænset ventetid
        if value is not None and value < 0:
            raise ValueError("must be >= 0 or unset")
        return value

    @property
    def log_directory(self) -> Path:
        """Returnerer log directory som Path objekt"""
        return Path(self.log_file_path).parent

    @property
    def config_file_info(self) -> dict:
        """Return information about which configuration file is being used."""
        from .utils.host_config import get_hostname, list_all_settings_files

        return {
            "hostname": get_hostname(),
            "active_config_file": get_hostname_settings_file(),
            "all_available_configs": list_all_settings_files(),
        }
