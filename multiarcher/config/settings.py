from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from multiarcher.errors import ConfigError


CACHE_SIZE_DEFAULT = 100000
REDIS_ADDR_DEFAULT = "localhost:6379"
CACHE_BACKENDS = ("inmemory", "redis")


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


@dataclass
class Settings:
    cache_backend: str = "inmemory"
    cache_size: int = CACHE_SIZE_DEFAULT
    redis_addr: str = REDIS_ADDR_DEFAULT
    host: str = ""
    port: int = 8080
    tls_enabled: bool = False
    cert_path: str = "./certs/tls.crt"
    key_path: str = "./certs/tls.key"
    log_level: str = "INFO"
    request_timeout_seconds: float = 25.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        cache_backend = (env.get("CACHE") or "inmemory").strip()
        if cache_backend not in CACHE_BACKENDS:
            raise ConfigError(f"invalid cache choice: {cache_backend}")

        raw_size = env.get("CACHE_SIZE") or str(CACHE_SIZE_DEFAULT)
        try:
            cache_size = int(raw_size)
        except ValueError as exc:
            raise ConfigError(f"invalid cache size: {raw_size}") from exc
        if cache_size <= 0:
            raise ConfigError(f"cache size must be positive: {raw_size}")

        tls_enabled = _truthy(env.get("TLS_ENABLED"))
        raw_port = env.get("PORT") or ("8443" if tls_enabled else "8080")
        try:
            port = int(raw_port)
        except ValueError as exc:
            raise ConfigError(f"invalid port: {raw_port}") from exc

        raw_timeout = env.get("REQUEST_TIMEOUT_SECONDS") or "25"
        try:
            request_timeout = float(raw_timeout)
        except ValueError as exc:
            raise ConfigError(f"invalid request timeout: {raw_timeout}") from exc

        return cls(
            cache_backend=cache_backend,
            cache_size=cache_size,
            redis_addr=env.get("REDIS_ADDR") or REDIS_ADDR_DEFAULT,
            host=env.get("HOST", ""),
            port=port,
            tls_enabled=tls_enabled,
            cert_path=env.get("CERT_PATH") or "./certs/tls.crt",
            key_path=env.get("KEY_PATH") or "./certs/tls.key",
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            request_timeout_seconds=request_timeout,
        )


__all__ = ["CACHE_SIZE_DEFAULT", "REDIS_ADDR_DEFAULT", "Settings"]
