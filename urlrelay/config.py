"""
Configuration module for the URL relay proxy.

Two layers live here:

- ``Settings``: Pydantic Settings loaded once from environment variables (or a
  ``.env`` file). Covers the interception prefix, redirect and cookie policy,
  transport timeouts and the HTTP server binding.
- ``ProxyConfig``: the immutable per-instance configuration the proxy engine
  runs with. It is built from ``Settings`` at startup and may later be replaced
  wholesale by a runtime reconfiguration message, never mutated in place.
"""

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from urlrelay.proxy import codec

DEFAULT_PREFIX = "/uv/"

# Mount point of the service's own control endpoints
CONTROL_PREFIX = "/__urlrelay"


def normalize_prefix(prefix: Optional[str]) -> str:
    """
    Normalize an interception prefix so it starts and ends with ``/``.

    Example:
        >>> normalize_prefix("proxy")
        '/proxy/'
        >>> normalize_prefix("")
        '/uv/'
    """
    if not prefix:
        return DEFAULT_PREFIX
    if not prefix.startswith("/"):
        prefix = "/" + prefix
    if not prefix.endswith("/"):
        prefix = prefix + "/"
    return prefix


def prefix_conflict(prefix: str) -> Optional[str]:
    """
    Describe why a normalized prefix would shadow the service's own routes.

    Returns:
        None when the prefix is usable, otherwise the reason it is not

    Example:
        >>> prefix_conflict("/uv/") is None
        True
        >>> prefix_conflict("/")
        "prefix '/' would intercept every request"
    """
    if prefix == "/":
        return "prefix '/' would intercept every request"

    control = CONTROL_PREFIX + "/"
    if control.startswith(prefix) or prefix.startswith(control):
        return f"prefix {prefix!r} overlaps the control endpoints under {CONTROL_PREFIX}"

    return None


# =============================================================================
# Immutable Proxy Configuration
# =============================================================================

class ProxyConfig(BaseModel):
    """
    Immutable configuration for one proxy engine instance.

    ``encode`` and ``decode`` must be mutual inverses for every syntactically
    valid absolute URL.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    prefix: str = Field(default=DEFAULT_PREFIX, description="Interception path prefix")
    encode: Callable[[str], str] = Field(default=codec.encode, description="URL -> token")
    decode: Callable[[str], str] = Field(default=codec.decode, description="token -> URL")
    follow_redirects: bool = Field(default=True, description="Follow upstream redirects")
    relay_cookies: bool = Field(default=False, description="Relay Set-Cookie headers")
    query_param: str = Field(default="u", min_length=1, description="Query-style target parameter")
    method_override_header: str = Field(
        default="X-Proxy-Method",
        min_length=1,
        description="Header naming the tunneled method on inbound POST",
    )
    marker_header: str = Field(default="x-urlrelay-proxied-by", min_length=1)
    marker_value: str = Field(default="urlrelay")

    @field_validator("prefix", mode="before")
    @classmethod
    def validate_prefix(cls, v: Any) -> str:
        if v is not None and not isinstance(v, str):
            raise ValueError("prefix must be a string")
        v = normalize_prefix(v)
        if "?" in v or "#" in v:
            raise ValueError(f"prefix must be a plain path, got: {v}")
        conflict = prefix_conflict(v)
        if conflict:
            raise ValueError(conflict)
        return v

    def merged(self, changes: Mapping[str, Any]) -> "ProxyConfig":
        """
        Return a new, fully validated configuration with ``changes`` applied.

        The receiver is left untouched.
        """
        fields = {name: getattr(self, name) for name in type(self).model_fields}
        fields.update(changes)
        return type(self)(**fields)

    def describe(self) -> Dict[str, Any]:
        """Plain (non-callable) fields, for status endpoints and logs."""
        return {
            "prefix": self.prefix,
            "followRedirects": self.follow_redirects,
            "relayCookies": self.relay_cookies,
            "queryParam": self.query_param,
            "methodOverrideHeader": self.method_override_header,
            "markerHeader": self.marker_header,
        }


# =============================================================================
# Environment Settings
# =============================================================================

class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # =========================================================================
    # Interception
    # =========================================================================

    PROXY_PREFIX: str = Field(
        default=DEFAULT_PREFIX,
        description="Path prefix under which requests are intercepted (e.g., /uv/)",
    )

    TARGET_QUERY_PARAM: str = Field(
        default="u",
        description="Query parameter carrying the token in query-style URLs",
        min_length=1,
    )

    METHOD_OVERRIDE_HEADER: str = Field(
        default="X-Proxy-Method",
        description="Header naming the intended method on tunneled POST requests",
        min_length=1,
    )

    # =========================================================================
    # Relay Policy
    # =========================================================================

    FOLLOW_REDIRECTS: bool = Field(
        default=True,
        description="Follow upstream redirects instead of surfacing them to the caller",
    )

    RELAY_SET_COOKIE: bool = Field(
        default=False,
        description="Relay upstream Set-Cookie headers (scoped to the proxy origin)",
    )

    PROXY_MARKER_HEADER: str = Field(
        default="x-urlrelay-proxied-by",
        description="Header added to every relayed response",
        min_length=1,
    )

    PROXY_MARKER_VALUE: str = Field(
        default="urlrelay",
        description="Value of the marker header",
    )

    # =========================================================================
    # Upstream Transport
    # =========================================================================

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Read/write/pool timeout for outbound requests",
        ge=1,
        le=600,
    )

    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Connect timeout for outbound requests",
        ge=1,
        le=120,
    )

    # =========================================================================
    # Runtime Reconfiguration
    # =========================================================================

    CONFIG_UPDATE_SECRET: Optional[str] = Field(
        None,
        description="Shared secret required in X-Internal-Secret for config updates",
        min_length=16,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=8080,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Raises:
            ValueError: If the level is unknown
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()

        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")

        return v

    @field_validator("PROXY_PREFIX")
    @classmethod
    def validate_proxy_prefix(cls, v: str) -> str:
        return normalize_prefix(v.strip())

    def to_proxy_config(self) -> ProxyConfig:
        """Build the immutable engine configuration from these settings."""
        return ProxyConfig(
            prefix=self.PROXY_PREFIX,
            follow_redirects=self.FOLLOW_REDIRECTS,
            relay_cookies=self.RELAY_SET_COOKIE,
            query_param=self.TARGET_QUERY_PARAM,
            method_override_header=self.METHOD_OVERRIDE_HEADER,
            marker_header=self.PROXY_MARKER_HEADER,
            marker_value=self.PROXY_MARKER_VALUE,
        )


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Raises:
        ValidationError: If an environment variable is invalid.
    """
    return Settings()


def validate_configuration(settings: Settings) -> dict:
    """
    Validate settings and return a status report for startup logging.

    Example:
        >>> report = validate_configuration(get_settings())
        >>> report["valid"]
        True
    """
    errors = []
    warnings = []

    conflict = prefix_conflict(settings.PROXY_PREFIX)
    if conflict:
        errors.append(f"PROXY_PREFIX: {conflict}")

    if settings.RELAY_SET_COOKIE:
        warnings.append("RELAY_SET_COOKIE is enabled: upstream cookies will be scoped to the proxy origin")

    if not settings.CONFIG_UPDATE_SECRET:
        warnings.append("CONFIG_UPDATE_SECRET is not set: runtime reconfiguration is unauthenticated")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "prefix": settings.PROXY_PREFIX,
        "follow_redirects": settings.FOLLOW_REDIRECTS,
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    report = validate_configuration(get_settings())

    for key, value in report.items():
        print(f"  {key:18} {value}")
