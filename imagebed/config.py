import logging
import os
from typing import Literal, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def normalize_public_domain(value: str) -> str:
    domain = value.strip().rstrip("/")
    if domain and not domain.startswith(("http://", "https://")):
        domain = f"https://{domain}"
    return domain


class Settings(BaseSettings):
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    ROOT_PATH: str = ""

    # Admin session
    ADMIN_PASSWORD: str = ""
    SESSION_SECRET: str = ""
    SESSION_DAYS: int = 7

    # Object store. STORAGE_ACCOUNT_ID targets R2, AWS_ENDPOINT_URL wins when set.
    STORAGE_ACCOUNT_ID: str = ""
    AWS_REGION: str = "auto"
    AWS_ACCESS_KEY_ID: str = "test"
    AWS_SECRET_ACCESS_KEY: str = "test"
    AWS_ENDPOINT_URL: Optional[str] = None
    BUCKET_NAME: str = "imagebed-images"
    PUBLIC_DOMAIN: str = ""

    # Order document
    ORDER_STORAGE_BACKEND: Literal["kv", "s3"] = "kv"
    ORDER_TABLE_NAME: str = ""
    ORDER_KV_KEY: str = "image-order"
    ORDER_OBJECT_KEY: str = ".imagebed/meta/order.json"

    # Uploads
    MAX_FILES_PER_UPLOAD: int = 20
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    UPLOAD_RATE_LIMIT: int = 10
    UPLOAD_RATE_WINDOW_MS: int = 60_000
    PRESIGN_EXPIRES_SECONDS: int = 60

    SSM_PARAMETER_PREFIX: str = ""

    model_config = {
        "env_file": ".env",
        "extra": "ignore"
    }

    @field_validator("ORDER_STORAGE_BACKEND", mode="before")
    @classmethod
    def _lower_backend(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("PUBLIC_DOMAIN")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        return normalize_public_domain(value)

    @field_validator(
        "SESSION_DAYS",
        "MAX_FILES_PER_UPLOAD",
        "MAX_FILE_SIZE",
        "UPLOAD_RATE_LIMIT",
        "UPLOAD_RATE_WINDOW_MS",
        "PRESIGN_EXPIRES_SECONDS",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _production_requirements(self):
        if self.is_production:
            missing = [
                name
                for name in ("ADMIN_PASSWORD", "SESSION_SECRET", "BUCKET_NAME", "PUBLIC_DOMAIN")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"Missing required settings: {', '.join(missing)}")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def is_local(self) -> bool:
        return self.ENV.lower() in ("dev", "local")

    @property
    def aws_endpoint(self) -> Optional[str]:
        if self.AWS_ENDPOINT_URL:
            return self.AWS_ENDPOINT_URL
        if self.STORAGE_ACCOUNT_ID:
            return f"https://{self.STORAGE_ACCOUNT_ID}.r2.cloudflarestorage.com"
        localstack_host = os.environ.get("LOCALSTACK_HOSTNAME")
        if localstack_host:
            return f"http://{localstack_host}:4566"
        return None

    def client_kwargs(self) -> dict:
        """Keyword arguments shared by every aioboto3 client and resource."""
        return {
            "region_name": self.AWS_REGION,
            "endpoint_url": self.aws_endpoint,
            "aws_access_key_id": self.AWS_ACCESS_KEY_ID,
            "aws_secret_access_key": self.AWS_SECRET_ACCESS_KEY,
        }


async def fetch_ssm_params(settings: Settings, session: aioboto3.Session) -> None:
    """
    Overrides the bucket and order table names from SSM Parameter Store.
    Does nothing unless SSM_PARAMETER_PREFIX is set.
    """
    prefix = settings.SSM_PARAMETER_PREFIX.rstrip("/")
    if not prefix:
        return

    names = {
        f"{prefix}/bucket_name": "BUCKET_NAME",
        f"{prefix}/order_table_name": "ORDER_TABLE_NAME",
    }
    try:
        async with session.client("ssm", **settings.client_kwargs()) as ssm:
            response = await ssm.get_parameters(Names=list(names), WithDecryption=True)
    except (ClientError, BotoCoreError) as e:
        logger.warning("Failed to fetch parameters from SSM, keeping configured values: %s", e)
        return

    for param in response.get("Parameters", []):
        field = names.get(param["Name"])
        if field:
            setattr(settings, field, param["Value"])

    logger.info(
        "Loaded config from SSM: bucket=%s order_table=%s",
        settings.BUCKET_NAME,
        settings.ORDER_TABLE_NAME or "-",
    )
