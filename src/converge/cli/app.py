"""
Root Typer application for the converge CLI.

Inspection commands for operators: the stage order, the role barrier,
content hashes, asset manifests, and the conditions of a topology
document.

Usage::

    converge stages                       # ordered pipeline and owning conditions
    converge roles                        # role table with barrier position
    converge hash "quay.io/amphora:1.2"   # content hash of a value
    converge manifest http://uploader:8080
    converge status topology.yaml         # conditions of a topology (YAML or JSON)
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from converge import __version__
from converge.core.conditions import ConditionStatus
from converge.core.errors import ConvergeError
from converge.core.hashing import object_hash
from converge.core.logging import configure_logging
from converge.core.models import Topology
from converge.core.settings import get_settings

app = typer.Typer(
    name="converge",
    help="converge — staged convergence controller for declared service topologies.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    ConditionStatus.TRUE: "green",
    ConditionStatus.FALSE: "red",
    ConditionStatus.UNKNOWN: "yellow",
}


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("converge-core")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"converge-core {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Enable structured logging at this level (default: CONVERGE_LOG_LEVEL).",
    ),
) -> None:
    """converge CLI — inspect pipelines, roles, hashes and topology status."""
    settings = get_settings()
    if log_level or "log_level" in settings.model_fields_set:
        configure_logging(log_level or settings.log_level, settings.json_logs, settings.service_name)


# ── Pipeline ─────────────────────────────────────────────────────────────


@app.command("stages")
def list_stages(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the reconciliation stages in the order they run."""
    from converge.reconcile.stages import STAGES

    if json_out:
        out = [
            {"stage": s.name, "condition": s.condition.value if s.condition else None}
            for s in STAGES
        ]
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title="Reconciliation Stages")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="bold cyan")
    table.add_column("Condition")
    for i, stage in enumerate(STAGES, start=1):
        table.add_row(str(i), stage.name, stage.condition.value if stage.condition else "—")
    console.print(table)


@app.command("roles")
def list_roles(
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List the worker roles and their position relative to the barrier."""
    from converge.reconcile.rollout import ROLE_PROFILES

    if json_out:
        out = {
            role.value: {
                "condition": profile.condition.value,
                "spec_field": profile.spec_field,
                "primary": profile.primary,
            }
            for role, profile in ROLE_PROFILES.items()
        }
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title="Worker Roles")
    table.add_column("Role", style="bold cyan")
    table.add_column("Condition")
    table.add_column("Spec field")
    table.add_column("Barrier")
    for role, profile in ROLE_PROFILES.items():
        table.add_row(
            role.value,
            profile.condition.value,
            profile.spec_field,
            "primary" if profile.primary else "after primary",
        )
    console.print(table)


# ── Hashing / assets ─────────────────────────────────────────────────────


@app.command("hash")
def hash_value(value: str = typer.Argument(..., help="Value to hash.")) -> None:
    """Print the content hash the controller would record for VALUE."""
    typer.echo(object_hash(value))


@app.command("manifest")
def show_manifest(
    endpoint: str = typer.Argument(..., help="Base URL of the asset uploader."),
    filename: str | None = typer.Option(None, "--file", "-f", help="Manifest file name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Fetch and parse an asset manifest from an uploader endpoint."""
    from converge.adapters.http import HttpManifestFetcher
    from converge.reconcile.assets import parse_manifest

    settings = get_settings()
    endpoint = endpoint.rstrip("/")
    url = f"{endpoint}/{filename or settings.manifest_filename}"
    try:
        with HttpManifestFetcher(timeout=settings.http_timeout_seconds) as fetcher:
            body = fetcher.fetch(url)
    except ConvergeError as e:
        err_console.print(f"[red]✗ {e.message}[/]")
        raise typer.Exit(1) from e

    entries = parse_manifest(body, endpoint, settings.asset_suffix)
    if json_out:
        out = [{"name": e.name, "url": e.url, "checksum": e.checksum} for e in entries]
        typer.echo(json.dumps(out, indent=2))
        return

    table = Table(title=f"Manifest ({len(entries)} entries)")
    table.add_column("Name", style="bold cyan")
    table.add_column("Checksum")
    table.add_column("URL")
    for entry in entries:
        table.add_row(entry.name, entry.checksum, entry.url)
    console.print(table)


# ── Status ───────────────────────────────────────────────────────────────


def _load_topology(path: Path) -> Topology:
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        err_console.print(f"[red]✗ cannot read {path}: {e}[/]")
        raise typer.Exit(1) from e
    try:
        return Topology.model_validate(data)
    except ValidationError as e:
        err_console.print(f"[red]✗ {path} is not a topology document:[/]\n{e}")
        raise typer.Exit(1) from e


@app.command("status")
def show_status(
    path: Path = typer.Argument(..., help="Topology document (YAML or JSON)."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Render the conditions recorded on a topology document."""
    topology = _load_topology(path)
    status = topology.status

    if json_out:
        typer.echo(json.dumps(status.model_dump(mode="json"), indent=2))
        return

    console.print(
        f"[bold]{topology.namespace}/{topology.name}[/] "
        f"generation {topology.metadata.generation}, observed {status.observed_generation}"
    )
    table = Table(title="Conditions")
    table.add_column("Type", style="bold")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Severity")
    table.add_column("Message")
    for c in status.conditions:
        style = _STATUS_STYLE[c.status]
        table.add_row(
            c.type,
            f"[{style}]{c.status.value}[/]",
            c.reason,
            c.severity.value or "—",
            c.message,
        )
    console.print(table)

    if status.hash:
        for key, value in sorted(status.hash.items()):
            console.print(f"  hash[{key}] = {value or '—'}")
