"""
Fetch configuration passed from a WebSource to the page fetcher.

Auth values arrive already resolved by the secrets resolver and live only
in memory for the duration of a run.
"""

import base64
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.conf import settings

from syncengine.exceptions import ConfigurationError

SCRAPER_TYPES = ("http", "browser", "hybrid")
AUTH_TYPES = ("none", "cookie", "header", "basic")


@dataclass(frozen=True)
class AuthConfig:
    type: str = "none"
    cookies: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_dict(cls, auth_type: Optional[str], data: Optional[dict] = None) -> "AuthConfig":
        auth_type = auth_type or "none"
        if auth_type not in AUTH_TYPES:
            raise ConfigurationError(f"Unknown auth type '{auth_type}'")
        data = data or {}

        config = cls(
            type=auth_type,
            cookies={str(k): str(v) for k, v in (data.get("cookies") or {}).items()},
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            username=data.get("username"),
            password=data.get("password"),
        )
        if auth_type == "basic" and not config.username:
            raise ConfigurationError("Basic auth requires a username")
        if auth_type == "cookie" and not config.cookies:
            raise ConfigurationError("Cookie auth requires at least one cookie")
        if auth_type == "header" and not config.headers:
            raise ConfigurationError("Header auth requires at least one header")
        return config

    def request_headers(self) -> Dict[str, str]:
        """Headers an HTTP request needs for this auth type."""
        if self.type == "header":
            return dict(self.headers)
        if self.type == "basic":
            credentials = f"{self.username}:{self.password or ''}".encode("utf-8")
            return {"Authorization": f"Basic {base64.b64encode(credentials).decode('ascii')}"}
        if self.type == "cookie":
            return {"Cookie": "; ".join(f"{name}={value}" for name, value in self.cookies.items())}
        return {}

    def browser_cookies(self, domain: str) -> List[dict]:
        if self.type != "cookie":
            return []
        return [
            {"name": name, "value": value, "domain": domain, "path": "/"}
            for name, value in self.cookies.items()
        ]

    def __repr__(self):
        # Never render secret values
        return f"AuthConfig(type={self.type!r})"


@dataclass(frozen=True)
class ScraperConfig:
    """Per-web-source fetch settings."""

    source_key: str
    scraper_type: str = "http"
    auth: AuthConfig = field(default_factory=AuthConfig)
    request_delay_ms: int = 1000
    max_concurrent: int = 1
    timeout: Optional[float] = None
    user_agent: Optional[str] = None

    def __post_init__(self):
        if self.scraper_type not in SCRAPER_TYPES:
            raise ConfigurationError(f"Unknown scraper type '{self.scraper_type}'")
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1")
        if self.request_delay_ms < 0:
            raise ConfigurationError("request_delay_ms cannot be negative")

    @property
    def effective_timeout(self) -> float:
        return self.timeout or getattr(settings, "SYNCENGINE_REQUEST_TIMEOUT", 30)

    @property
    def effective_user_agent(self) -> str:
        return self.user_agent or settings.SYNCENGINE_USER_AGENT

    @classmethod
    def from_web_source(cls, web_source, auth_data: Optional[dict] = None) -> "ScraperConfig":
        return cls(
            source_key=str(web_source.pk),
            scraper_type=web_source.scraper_type,
            auth=AuthConfig.from_dict(web_source.auth_type, auth_data),
            request_delay_ms=web_source.request_delay_ms,
            max_concurrent=web_source.max_concurrent,
        )
