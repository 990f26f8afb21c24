"""Pydantic configuration model for courier clients."""

import logging
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..logging_config import setup_logging
from .options import RetryOptions, TimeoutOptions, _retry_shorthand, _timeout_shorthand


class ClientSettings(BaseModel):
    """
    Declarative client profile, loadable from YAML.

    Example:
        settings = ClientSettings.from_yaml_file(Path("courier.yaml"))
        async with Client(settings=settings) as client:
            ...

    YAML format:
        prefix_url: https://api.example.com/v2
        headers:
          accept: application/json
        timeout:
          connect: 2
          request: 30
        retry:
          limit: 4
          status_codes: [429, 503]
        log_level: DEBUG
    """

    prefix_url: Optional[str] = Field(None, description="Base URL prepended to relative urls")
    headers: dict[str, str] = Field(default_factory=dict, description="Default request headers")
    user_agent: Optional[str] = Field(None, description="Custom User-Agent header")

    timeout: TimeoutOptions = Field(default_factory=TimeoutOptions)
    retry: RetryOptions = Field(default_factory=RetryOptions)

    follow_redirect: bool = Field(True, description="Follow 3xx responses with a location")
    max_redirects: int = Field(10, ge=0, description="Longest redirect chain before failing")
    method_rewriting: bool = Field(False, description="Rewrite non-GET methods to GET on 301/302")
    decompress: bool = Field(True, description="Decode gzip, deflate and br bodies")
    throw_http_errors: bool = Field(True, description="Raise HTTPError on non-ok responses")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "WARNING",
        description="Logging level",
    )
    log_file: Optional[Path] = Field(None, description="Log file path")

    model_config = {"extra": "forbid"}

    @field_validator("timeout", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: Any) -> Any:
        return _timeout_shorthand(value)

    @field_validator("retry", mode="before")
    @classmethod
    def _coerce_retry(cls, value: Any) -> Any:
        return _retry_shorthand(value)

    def to_options(self) -> dict[str, Any]:
        """Return the explicitly set request options as an ``Options.merge`` patch."""
        fields_set = self.model_fields_set
        patch: dict[str, Any] = {}
        for name in (
            "prefix_url",
            "timeout",
            "retry",
            "follow_redirect",
            "max_redirects",
            "method_rewriting",
            "decompress",
            "throw_http_errors",
        ):
            if name in fields_set:
                patch[name] = getattr(self, name)

        headers = dict(self.headers)
        if self.user_agent:
            headers["user-agent"] = self.user_agent
        if headers:
            patch["headers"] = headers
        return patch

    def configure_logging(self, console: Any = None) -> logging.Logger:
        """
        Apply ``log_level`` and ``log_file`` to the ``courier`` logger.

        Clients never configure logging themselves; applications call this
        (the CLI does) when they want the profile to control it.
        """
        log_file = str(self.log_file) if self.log_file else None
        return setup_logging(self.log_level, log_file, force=True, console=console)

    def to_yaml(self) -> str:
        """Serialize settings to YAML string."""
        import yaml

        data = self.model_dump(mode="json", exclude_none=True, exclude={"retry": {"calculate_delay"}})
        return yaml.dump(data, default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "ClientSettings":
        """Load settings from YAML string."""
        import yaml

        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path) -> "ClientSettings":
        """Load settings from YAML file."""
        return cls.from_yaml(Path(path).read_text())
