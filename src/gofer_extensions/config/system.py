"""System configuration: boot parameters every extension reads from its environment."""

from __future__ import annotations

import os
import ssl
import tempfile
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from gofer_extensions.config.duration import parse_duration

ENV_PREFIX = "GOFER_EXTENSION_SYSTEM_"

MIN_TICK_INTERVAL = timedelta(seconds=1)

# Env suffix -> SystemConfig field. Anything else under the prefix lands in ``extras``.
_ENV_FIELDS = {
    "ID": "extension_id",
    "SECRET": "shared_secret",
    "LOG_LEVEL": "log_level",
    "USE_TLS": "use_tls",
    "TLS_CERT": "tls_cert",
    "TLS_KEY": "tls_key",
    "BIND_ADDRESS": "bind_address",
    "HOST_ADDRESS": "host_address",
    "GOFER_HOST": "host_address",
    "SKIP_TLS_VERIFY": "skip_tls_verify",
    "TICK_INTERVAL": "tick_interval",
}
_FIELD_ENV = {
    field: ENV_PREFIX + suffix
    for suffix, field in _ENV_FIELDS.items()
    if suffix != "GOFER_HOST"
}


class ConfigError(Exception):
    """Raised when the environment does not describe a usable extension."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("invalid extension configuration: " + "; ".join(problems))


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"'{address}' should be in the form '<ip>:<port>'")
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"'{address}' has a non-numeric port") from None
    if not 0 <= port_num <= 65535:
        raise ValueError(f"'{address}' has an out of range port")
    return host.strip("[]"), port_num


def verify_keypair(cert_pem: str, key_pem: str) -> None:
    """Raise ``ValueError`` unless the PEM cert and key load as a matching pair."""
    with tempfile.TemporaryDirectory() as tmp:
        cert_path = Path(tmp) / "cert.pem"
        key_path = Path(tmp) / "key.pem"
        cert_path.write_text(cert_pem)
        key_path.write_text(key_pem)
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(str(cert_path), str(key_path))
        except ssl.SSLError as e:
            raise ValueError(f"tls_cert and tls_key do not form a valid key pair: {e}") from e


class SystemConfig(BaseModel):
    """Immutable boot configuration shared by every extension process."""

    model_config = ConfigDict(frozen=True)

    extension_id: str
    shared_secret: str = Field(repr=False)
    log_level: str = "info"
    use_tls: bool = True
    tls_cert: str = Field(default="", repr=False)
    tls_key: str = Field(default="", repr=False)
    bind_address: str = "0.0.0.0:8082"
    host_address: str = "localhost:8080"
    skip_tls_verify: bool = False
    tick_interval: timedelta = timedelta(minutes=1)
    extras: dict[str, str] = Field(default_factory=dict, repr=False)

    @field_validator("extension_id", "shared_secret")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("required but missing")
        return v.strip()

    @field_validator("bind_address")
    @classmethod
    def validate_bind_address(cls, v: str) -> str:
        _split_address(v)
        return v.strip()

    @field_validator("host_address")
    @classmethod
    def validate_host_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("required but missing")
        return v.strip().rstrip("/")

    @field_validator("tick_interval", mode="before")
    @classmethod
    def parse_tick_interval(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("tick_interval")
    @classmethod
    def validate_tick_interval(cls, v: timedelta) -> timedelta:
        if v < MIN_TICK_INTERVAL:
            raise ValueError(
                f"must be at least {MIN_TICK_INTERVAL.total_seconds():g}s"
            )
        return v

    @model_validator(mode="after")
    def validate_tls(self) -> "SystemConfig":
        if not self.use_tls:
            return self
        missing = [name for name in ("tls_cert", "tls_key") if not getattr(self, name).strip()]
        if missing:
            raise ValueError(
                f"{' and '.join(missing)} required when use_tls is true"
            )
        verify_keypair(self.tls_cert, self.tls_key)
        return self

    @property
    def bind_host(self) -> str:
        return _split_address(self.bind_address)[0]

    @property
    def bind_port(self) -> int:
        return _split_address(self.bind_address)[1]

    @property
    def host_url(self) -> str:
        """Base URL of the Gofer host; scheme follows ``use_tls`` unless given."""
        if "://" in self.host_address:
            return self.host_address
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host_address}"

    def extra(self, name: str, default: str | None = None) -> str | None:
        """Look up a source-specific setting (``GOFER_EXTENSION_SYSTEM_<NAME>``)."""
        value = self.extras.get(name.lower())
        return value if value else default

    def public_view(self) -> dict[str, Any]:
        """The non-secret portion of the config, safe to expose on /debug."""
        return {
            "extension_id": self.extension_id,
            "log_level": self.log_level,
            "use_tls": self.use_tls,
            "bind_address": self.bind_address,
            "host_address": self.host_address,
            "skip_tls_verify": self.skip_tls_verify,
            "tick_interval_seconds": self.tick_interval.total_seconds(),
            "extras": sorted(self.extras),
        }

    def write_tls_files(self, directory: Path) -> tuple[Path, Path]:
        """Materialise the PEM cert and key so the HTTP server can load them."""
        cert_path = directory / "extension-cert.pem"
        key_path = directory / "extension-key.pem"
        cert_path.write_text(self.tls_cert)
        key_path.write_text(self.tls_key)
        key_path.chmod(0o600)
        return cert_path, key_path


def _describe(error: dict[str, Any]) -> str:
    msg = error["msg"].removeprefix("Value error, ")
    if error["loc"]:
        field = str(error["loc"][0])
        return f"{_FIELD_ENV.get(field, field)}: {msg}"
    return msg


def load_system_config(environ: Mapping[str, str] | None = None) -> SystemConfig:
    """Read and validate the system config from the process environment.

    Empty values count as unset. Raises ``ConfigError`` carrying one diagnostic
    per bad field.
    """
    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    extras: dict[str, str] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX) or value == "":
            continue
        suffix = key[len(ENV_PREFIX):]
        field = _ENV_FIELDS.get(suffix)
        if field is None:
            extras[suffix.lower()] = value
        elif field not in raw or suffix != "GOFER_HOST":
            raw[field] = value

    raw.setdefault("extension_id", "")
    raw.setdefault("shared_secret", "")
    raw["extras"] = extras

    try:
        return SystemConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError([_describe(err) for err in e.errors()]) from e


def lookup_param(params: Mapping[str, str], key: str) -> str | None:
    """Case-insensitive lookup of a pipeline subscription parameter."""
    wanted = key.upper()
    for name, value in params.items():
        if name.upper() == wanted:
            return value
    return None
