import typer
import requests
from datetime import timedelta
from typing import Optional

from promptopt.config import settings
from promptopt.database import init_db
from promptopt.errors import ValidationError
from promptopt.metering.reporting import render_markdown
from promptopt.services import get_ledger, get_metering_config, get_registry, get_reporter

app = typer.Typer(help="Quota and provider administration CLI")


@app.callback()
def main():
    """Ensure tables exist before any command touches the ledger."""
    init_db()


@app.command()
def usage(user_id: str, days: int = typer.Option(30, help="Days of history, 1-365")):
    """
    Show a user's usage report.
    """
    try:
        summary = get_reporter().summarize(user_id, days)
    except ValidationError as e:
        typer.echo(f"Error: {e.detail}")
        raise typer.Exit(code=1)

    typer.echo(render_markdown(user_id, summary))


@app.command("show-quota")
def show_quota(user_id: str):
    """
    Show a user's effective daily limits.
    """
    limits = get_ledger().get_limits(user_id)
    typer.echo(f"User:       {user_id}")
    typer.echo(f"Tier:       {limits.tier}")
    typer.echo(f"Quick/day:  {limits.quick_daily_max}")
    typer.echo(f"Deep/day:   {limits.deep_daily_max}")
    typer.echo(f"Tokens/day: {limits.token_daily_max}")
    typer.echo(f"Calls/day:  {limits.api_calls_daily_max}")


@app.command("set-quota")
def set_quota(
    user_id: str,
    tier: Optional[str] = typer.Option(None, help="free, pro or enterprise"),
    quick: Optional[int] = typer.Option(None, help="Quick optimizations per day"),
    deep: Optional[int] = typer.Option(None, help="Deep optimizations per day"),
    tokens: Optional[int] = typer.Option(None, help="Tokens per day"),
    calls: Optional[int] = typer.Option(None, help="API calls per day"),
    admin: str = typer.Option("cli", help="Recorded as the author of the change"),
):
    """
    Override a user's tier and/or daily ceilings.
    """
    try:
        limits = get_ledger().set_limits(
            user_id,
            tier=tier,
            updated_by=admin,
            quick_daily_max=quick,
            deep_daily_max=deep,
            token_daily_max=tokens,
            api_calls_daily_max=calls,
        )
    except ValidationError as e:
        typer.echo(f"Error: {e.detail}")
        raise typer.Exit(code=1)

    typer.echo(
        f"Updated {user_id}: tier={limits.tier} quick={limits.quick_daily_max} "
        f"deep={limits.deep_daily_max} tokens={limits.token_daily_max} calls={limits.api_calls_daily_max}"
    )


@app.command()
def providers(include_disabled: bool = typer.Option(False, "--all", help="Include disabled providers")):
    """
    List configured provider/model pairs.
    """
    registry = get_registry()

    typer.echo(f"{'Provider':<12} | {'Model':<40} | {'Priority':<8} | {'Enabled':<7} | {'Key'}")
    typer.echo("-" * 85)

    for config in registry.list_configs(include_disabled=include_disabled):
        has_key = "yes" if registry.credentials.has(config.api_key_reference) else "missing"
        typer.echo(
            f"{config.provider_name.value:<12} | {config.model_id:<40} | {config.priority:<8} | "
            f"{str(config.is_enabled):<7} | {has_key}"
        )


@app.command("prune-keys")
def prune_keys(retention_days: Optional[int] = typer.Option(None, help="Keep keys this many days")):
    """
    Delete idempotency keys older than the retention horizon.
    """
    config = get_metering_config()
    retention = retention_days if retention_days is not None else config.idempotency_retention_days
    if retention < 1:
        typer.echo("Error: retention must be at least 1 day")
        raise typer.Exit(code=1)

    cutoff = config.today() - timedelta(days=retention)
    deleted = get_ledger().prune_commits(cutoff)
    typer.echo(f"Deleted {deleted} idempotency keys recorded before {cutoff.isoformat()}")


@app.command()
def metrics(
    url: str = typer.Option("http://localhost:8000", help="Base URL of a running service"),
    token: str = typer.Option(..., envvar="PROMPTOPT_ADMIN_TOKEN", help="Admin bearer token"),
):
    """
    Print the metrics snapshot of a running service.
    """
    try:
        response = requests.get(
            f"{url.rstrip('/')}{settings.API_V1_PREFIX}/admin/metrics",
            headers={"Authorization": f"Bearer {token}"},
            timeout=10,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        typer.echo(f"Error: could not fetch metrics: {e}")
        raise typer.Exit(code=1)

    snapshot = response.json()
    for key, value in sorted(snapshot["counters"].items()):
        typer.echo(f"{key} = {value}")
    for key, value in sorted(snapshot["gauges"].items()):
        typer.echo(f"{key} = {value}")
    for key, stats in sorted(snapshot["histograms"].items()):
        typer.echo(f"{key}: count={stats.get('count', 0)} p50={stats.get('p50')} p95={stats.get('p95')}")


if __name__ == "__main__":
    app()
