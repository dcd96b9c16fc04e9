"""PineGate CLI — operate grants, catalogs and sessions from a shell.

Every command runs in-process against the configured database, using the
same services as the API.

Usage:
    pinegate serve                      Start the API server
    pinegate health-check               Re-validate stored seller sessions
    pinegate sync-catalog SELLER_ID     Pull a seller's published scripts
    pinegate assign GRANT_ID            Run an assign attempt for a grant
    pinegate revoke GRANT_ID            Revoke a grant
    pinegate verify GRANT_ID            Check a grant against TradingView
    pinegate trial-cleanup              Revoke expired trials
    pinegate keygen-info                Show where the vault key comes from
"""

import base64
import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Optional

import typer
from rich.console import Console

from pinegate.config import PineGateConfig, load_config

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="pinegate",
    help="TradingView invite-only script access automation",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to pinegate.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """PineGate CLI."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _load() -> PineGateConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)


@contextmanager
def _runtime() -> Generator[tuple, None, None]:
    """Yield (db, vault, config) for one command."""
    from pinegate.db.connection import get_db_context, init_db
    from pinegate.services.credential_vault import build_default_vault

    cfg = _load()
    init_db()
    vault = build_default_vault()
    with get_db_context() as db:
        yield db, vault, cfg


def _exit_for(result: dict) -> None:
    if result.get("success") is False:
        raise typer.Exit(1)


# --- Version / config ---


@app.command()
def version():
    """Show PineGate version."""
    from importlib.metadata import version as pkg_version

    try:
        v = pkg_version("pinegate")
    except Exception:
        v = "unknown"
    console.print(f"[bold]PineGate[/bold] v{v}")


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = _load()
    for section, values in cfg.model_dump().items():
        console.print(f"[bold]{section}:[/bold]")
        for key, value in values.items():
            console.print(f"  {key}: {value}")


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file without running anything."""
    try:
        load_config(config_path=config or _config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Config is valid.[/green]")


@app.command("keygen-info")
def keygen_info(
    generate: bool = typer.Option(
        False, "--generate", help="Print a fresh base64 key for PINEGATE_VAULT_KEY"
    ),
):
    """Show which vault key source is active (never the key itself)."""
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    from pinegate.services.credential_vault import get_key_source_info

    info = get_key_source_info()
    console.print(f"[bold]Key source:[/bold] {info['source']}")
    if info["path"]:
        console.print(f"[bold]Key path:[/bold] {info['path']}")
    if generate:
        key = AESGCM.generate_key(bit_length=256)
        console.print(base64.b64encode(key).decode("ascii"))


# --- Operations ---


@app.command("health-check")
def health_check(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Re-validate stored seller sessions and disable broken programs."""
    from pinegate.cli.output import format_summary
    from pinegate.services.health_prober import SessionHealthProber

    with _runtime() as (db, vault, cfg):
        summary = SessionHealthProber(db, vault, cfg).run()
    console.print(format_summary(summary, "Health Check", as_json=json_output))


@app.command("sync-catalog")
def sync_catalog(
    seller_id: str = typer.Argument(help="Seller ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull a seller's published scripts from TradingView."""
    from pinegate.cli.output import format_catalog
    from pinegate.errors import DomainError
    from pinegate.services.catalog_sync import CatalogSynchronizer

    with _runtime() as (db, vault, cfg):
        try:
            result = CatalogSynchronizer(db, vault, cfg.platform).sync(seller_id)
        except DomainError as e:
            console.print(f"[red]{e.code}:[/red] {e.message}")
            if e.remediation:
                console.print(f"  {e.remediation}")
            raise typer.Exit(1)
    console.print(format_catalog(result, as_json=json_output))


@app.command()
def assign(
    grant_id: str = typer.Argument(help="Grant ID"),
    pine_id: Optional[str] = typer.Option(None, "--pine-id", help="Defaults to the grant's pine id"),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Defaults to the grant's buyer"),
    access_type: Optional[str] = typer.Option(None, "--access-type", help="full_purchase, trial or subscription"),
    trial_days: Optional[int] = typer.Option(None, "--trial-days", help="Trial length in days"),
    expires_at: Optional[str] = typer.Option(None, "--expires-at", help="Subscription expiry (ISO 8601)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Run one assign attempt for a grant."""
    from pinegate.cli.output import format_result
    from pinegate.db.models import AccessGrant
    from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator

    with _runtime() as (db, vault, cfg):
        grant = db.get(AccessGrant, grant_id)
        result = AccessGrantOrchestrator(db, vault, cfg).assign(
            pine_id=pine_id or (grant.pine_id if grant else ""),
            buyer_username=username or (grant.buyer_username if grant else ""),
            grant_id=grant_id,
            access_type=access_type,
            trial_duration_days=trial_days,
            subscription_expires_at=expires_at,
        )
    console.print(format_result(result, "Assign", as_json=json_output))
    _exit_for(result)


@app.command()
def revoke(
    grant_id: str = typer.Argument(help="Grant ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Revoke a grant's access and mark it expired."""
    from pinegate.cli.output import format_result
    from pinegate.db.models import AccessGrant
    from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator

    with _runtime() as (db, vault, cfg):
        grant = db.get(AccessGrant, grant_id)
        result = AccessGrantOrchestrator(db, vault, cfg).revoke(
            pine_id=grant.pine_id if grant else "",
            buyer_username=grant.buyer_username if grant else "",
            grant_id=grant_id,
        )
    console.print(format_result(result, "Revoke", as_json=json_output))
    _exit_for(result)


@app.command()
def verify(
    grant_id: str = typer.Argument(help="Grant ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Check whether the buyer is on the script's access list."""
    from pinegate.cli.output import format_result
    from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator

    with _runtime() as (db, vault, cfg):
        result = AccessGrantOrchestrator(db, vault, cfg).verify(grant_id)
    console.print(format_result(result, "Verify", as_json=json_output))
    _exit_for(result)


@app.command()
def logs(grant_id: str = typer.Argument(help="Grant ID")):
    """Print a grant's assignment log."""
    from pinegate.services.assignment_log_service import AssignmentLogService

    with _runtime() as (db, _vault, _cfg):
        text = AssignmentLogService(db).export_logs_text(grant_id)
    console.print(text or f"No log entries for grant {grant_id}.", markup=False)


@app.command("trial-cleanup")
def trial_cleanup(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Revoke trial grants whose window has closed."""
    from pinegate.cli.output import format_summary
    from pinegate.services.trial_cleanup import cleanup_expired_trials

    with _runtime() as (db, vault, cfg):
        summary = cleanup_expired_trials(db, vault, cfg)
    console.print(format_summary(summary, "Trial Cleanup", as_json=json_output))
    if summary["errors"]:
        raise typer.Exit(1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the PineGate API server."""
    import uvicorn

    cfg = _load()
    bind_host = host or cfg.daemon.host
    bind_port = port or cfg.daemon.port
    _log.info("Starting API on %s:%d", bind_host, bind_port)
    uvicorn.run(
        "pinegate.api.main:app",
        host=bind_host,
        port=bind_port,
        workers=1,
        log_level=cfg.daemon.log_level,
        lifespan="on",
    )


if __name__ == "__main__":
    app()
