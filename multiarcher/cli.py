from __future__ import annotations

import base64
import json
import logging
from pathlib import Path

import typer
import uvicorn
import yaml

from multiarcher.admission.engine import AdmissionEngine
from multiarcher.cache.store import InMemoryCache
from multiarcher.common.deadline import Deadline
from multiarcher.config.settings import Settings
from multiarcher.config.tolerations import load_platform_toleration_config
from multiarcher.errors import AdmissionError, ConfigError, UpstreamError
from multiarcher.kube.client import UnavailableKubeClient
from multiarcher.registry.manifests import DEFAULT_TIMEOUT_SECONDS, RegistryManifestInspector

app = typer.Typer(help="Tolerate Kubernetes workloads onto nodes of every platform their images support.")


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as exc:
        typer.echo(f"invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def serve() -> None:
    """Run the webhook server configured from the environment."""
    settings = _load_settings()
    _configure_logging(settings.log_level)

    from multiarcher.server.app import get_engine

    try:
        get_engine()
    except ConfigError as exc:
        typer.echo(f"invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    options = {}
    if settings.tls_enabled:
        options = {"ssl_certfile": settings.cert_path, "ssl_keyfile": settings.key_path}
    uvicorn.run(
        "multiarcher.server.app:app",
        host=settings.host or "0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
        **options,
    )


@app.command()
def platforms(
    image: str = typer.Argument(..., help="Image reference, e.g. nginx:1.27 or ghcr.io/org/app@sha256:..."),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_SECONDS, help="Registry request timeout in seconds."),
) -> None:
    """Print the platforms listed in an image's manifest list (anonymous access)."""
    _configure_logging("WARNING")
    try:
        found = RegistryManifestInspector().get_manifest_platforms(image, timeout=timeout)
    except UpstreamError as exc:
        typer.echo(f"failed to inspect {image}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    for platform in found:
        typer.echo(platform)


@app.command()
def review(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="AdmissionReview as JSON or YAML."),
    show_patch: bool = typer.Option(False, "--show-patch", help="Also print the decoded JSON patch."),
) -> None:
    """Run one AdmissionReview through the engine without a cluster."""
    settings = _load_settings()
    _configure_logging(settings.log_level)

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        typer.echo(f"failed to parse {path}: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    engine = AdmissionEngine(
        cache=InMemoryCache(settings.cache_size),
        config=load_platform_toleration_config(),
        kube=UnavailableKubeClient("offline review"),
    )
    try:
        result = engine.process(Deadline.after(settings.request_timeout_seconds), json.dumps(document).encode("utf-8"))
    except AdmissionError as exc:
        typer.echo(f"admission review rejected: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps(result.to_wire(), indent=2))
    patch = result.response.patch if result.response else None
    if show_patch and patch:
        typer.echo(json.dumps(json.loads(base64.b64decode(patch)), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
