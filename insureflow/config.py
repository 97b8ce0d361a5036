"""
Client configuration for InsureFlow.

Settings come from an optional YAML or JSON file and are then overridden
by ``INSUREFLOW_*`` environment variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:8000/api"

ENV_OVERRIDES = {
    "INSUREFLOW_API_BASE_URL": "api_base_url",
    "INSUREFLOW_QUOTE_BASE_URL": "quote_base_url",
    "INSUREFLOW_TIMEOUT": "timeout",
    "INSUREFLOW_SESSION_FILE": "session_file",
    "INSUREFLOW_AUDIT_DIR": "audit_dir",
    "INSUREFLOW_LIFECYCLE_DIR": "lifecycle_config_dir",
}


class ClientSettings(BaseModel):
    """Settings for the collaborator client and local state."""
    api_base_url: str = DEFAULT_API_BASE_URL
    quote_base_url: Optional[str] = Field(
        None, description="Pricing base URL; derived from api_base_url when unset"
    )
    timeout: Optional[float] = Field(30.0, gt=0)
    session_file: Path = Field(default_factory=lambda: Path.home() / ".insureflow" / "auth.json")
    audit_dir: Optional[Path] = Field(None, description="Audit log directory; unset disables auditing")
    lifecycle_config_dir: Optional[Path] = None

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return v


def _read_file(config_path: Path) -> Dict[str, Any]:
    with open(config_path, encoding="utf-8") as f:
        if config_path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return data


def load_settings(config_path: Optional[Union[str, Path]] = None,
                  environ: Optional[Mapping[str, str]] = None) -> ClientSettings:
    """
    Load client settings.

    Args:
        config_path: YAML or JSON file; skipped when None
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        Validated ClientSettings

    Raises:
        FileNotFoundError: If ``config_path`` is given but does not exist
    """
    values: Dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        values.update(_read_file(config_path))
        logger.info(f"Loaded settings from {config_path}")

    environ = os.environ if environ is None else environ
    for variable, field in ENV_OVERRIDES.items():
        if environ.get(variable):
            values[field] = environ[variable]
            logger.debug(f"Setting {field} overridden by {variable}")

    return ClientSettings(**values)
