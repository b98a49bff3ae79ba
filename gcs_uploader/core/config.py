from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"


class Settings(BaseSettings):
    """Uploader configuration loaded from YAML with environment overrides.

    Field names match the process flags so ``BUCKET_NAME``, ``AMQP_IP`` and the
    rest of the environment variables keep their names.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(
        default="gcs-uploader",
        description="Name reported in logs and by the health probe.",
    )
    debug: bool = Field(default=False, description="Enable DEBUG logging.")

    bucket_name: str = Field(
        default="",
        description="Cloud Storage bucket receiving uploaded files.",
    )
    bucket_folder_path: str = Field(
        default="test",
        description="Bucket folder path. Logged only; objects go under the request Path.",
    )
    gcp_project_id: str | None = Field(
        default=None,
        description="Project for the storage client; inferred from credentials when unset.",
    )
    storage_host: str = Field(
        default="storage.googleapis.com",
        description="Host used to build public object URLs.",
    )
    storage_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Per-request timeout for Cloud Storage calls.",
    )

    amqp_transport: str = Field(
        default="amqp",
        description="kombu transport name. 'memory' runs an in-process broker.",
    )
    amqp_user_name: str = Field(default="guest")
    amqp_password: str = Field(default="guest")
    amqp_ip: str = Field(default="localhost")
    amqp_port: int = Field(default=5672, ge=1, le=65_535)
    amqp_virtual_host: str = Field(default="/")
    amqp_listen_key: str = Field(
        default="FILES",
        description="Queue consumed for upload requests.",
    )
    amqp_response_key: str = Field(
        default="UPLOAD_COMPLETED",
        description="Queue receiving completion notifications.",
    )
    amqp_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds the consumer waits for a delivery before re-checking the stop signal.",
    )
    ack_mode: Literal["auto", "explicit"] = Field(
        default="auto",
        description=(
            "'auto' acknowledges on receipt. 'explicit' acknowledges after handling "
            "and rejects failed messages without requeue."
        ),
    )
    amqp_dead_letter_exchange: str | None = Field(
        default=None,
        description="x-dead-letter-exchange argument for the listen queue (explicit mode).",
    )

    def redacted_amqp_url(self) -> str:
        """Broker URL in kombu form with the password masked."""
        return (
            f"{self.amqp_transport}://{self.amqp_user_name}:****"
            f"@{self.amqp_ip}:{self.amqp_port}/{self.amqp_virtual_host}"
        )

    def redacted(self) -> dict[str, Any]:
        """Settings as a dict safe to log."""
        values = self.model_dump()
        values["amqp_password"] = "****"
        return values

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Merge config sources so env/.env override YAML values."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._yaml_config_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_config_settings() -> dict[str, Any]:
        try:
            with CONFIG_PATH.open("r", encoding="utf-8") as file:
                data = yaml.safe_load(file) or {}
        except FileNotFoundError as exc:
            raise RuntimeError(f"Config file not found at {CONFIG_PATH}") from exc
        except yaml.YAMLError as exc:
            raise RuntimeError(f"Failed to parse configuration file {CONFIG_PATH}") from exc

        if not isinstance(data, dict):
            raise RuntimeError(
                f"Invalid configuration format in {CONFIG_PATH}: expected a mapping."
            )

        return data


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
