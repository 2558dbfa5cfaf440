"""Site config file loading and runtime settings."""

import configparser
import re
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigFileNotFoundError, InvalidConfigError

DEFAULT_CONFIG_PATH = "./config.site"

# RDS identifiers are capped at 63 characters and the test slot adds "-test".
MAX_BASE_NAME_LENGTH = 63 - len("-test")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z](?:[A-Za-z0-9]|-(?!-))*$")
_SECTION = "site"

# Keys as they appear in the file (configparser lowercases them).
_FILE_KEYS = {
    "dbuser": "db_user",
    "dbname": "db_name",
    "awsregion": "aws_region",
}


class Settings(BaseSettings):
    """Runtime settings, overridable through PROMOTER_* environment variables."""

    # Waiting
    poll_interval_seconds: float = 10.0
    rename_settle_seconds: float = 40.0
    not_found_retry_seconds: float = 2.0
    max_not_found_retries: int = 60
    max_polls: int = 360
    wait_timeout_seconds: float = 3600.0

    # Cluster shape
    engine: str = "aurora-mysql"
    instance_class: str = "db.t3.medium"

    # Credentials
    password_length: int = 21
    password_digits: int = 5

    # AWS session
    role_arn: Optional[str] = None
    external_id: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "PROMOTER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class SiteConfig(BaseModel):
    """Values read from the site config file."""

    db_user: str = Field(..., min_length=1, max_length=16)
    db_name: str = Field(..., min_length=1, max_length=MAX_BASE_NAME_LENGTH)
    aws_region: str = Field(..., min_length=1)

    @field_validator("db_name")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate that the base name is usable as an RDS cluster identifier."""
        if not _IDENTIFIER_RE.match(v) or v.endswith("-"):
            raise ValueError(
                "dbname must start with a letter and contain only letters, digits "
                "and single hyphens, without a trailing hyphen"
            )
        return v

    @property
    def base_name(self) -> str:
        return self.db_name


def parse_site_config(text: str, source: str = "<string>") -> SiteConfig:
    """
    Parse flat ``key: value`` lines into a SiteConfig.

    Args:
        text: File contents
        source: Name used in error messages

    Returns:
        Validated SiteConfig

    Raises:
        InvalidConfigError: If the content cannot be parsed or validated
    """
    parser = configparser.ConfigParser(
        delimiters=(":", "="), interpolation=None, strict=False, allow_no_value=True
    )

    # Every line is a flat entry; later duplicates win and section headers are skipped.
    lines = [line.strip() for line in text.splitlines()]
    body = "\n".join(line for line in lines if not line.startswith("["))

    try:
        parser.read_string(f"[{_SECTION}]\n{body}", source=source)
    except configparser.Error as e:
        raise InvalidConfigError(source, str(e)) from e

    values = {
        _FILE_KEYS[key]: value.strip()
        for key, value in parser.items(_SECTION)
        if key in _FILE_KEYS and value is not None
    }

    try:
        return SiteConfig(**values)
    except ValidationError as e:
        raise InvalidConfigError(source, str(e)) from e


def load_site_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> SiteConfig:
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigFileNotFoundError(str(path))

    return parse_site_config(path.read_text(), source=str(path))
