"""CLI for policy-distiller - all commands in one module.

Provides commands: analyze, status, providers.

policy_distiller/src/policy_distiller/cli.py
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import click
from rich.markup import escape
from rich.table import Table

from policy_distiller.analysis import AnalysisOrchestrator
from policy_distiller.config import (
    PROVIDER_DEFAULTS,
    ProviderKind,
    find_project_root,
    get_provider_config,
)
from policy_distiller.console_utils import console, err_console, render_result
from policy_distiller.errors import AnalysisFailedError, CompletionError
from policy_distiller.llm import HostedGatewayProvider, available_provider_kinds, create_provider

logger = logging.getLogger(__name__)


@dataclass
class DistillerContext:
    """Shared context for CLI commands."""

    project_root: Path | None = None
    verbose: bool = False


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """policy-distiller: AI analysis of privacy policies."""
    ctx.obj = DistillerContext(project_root=find_project_root(), verbose=verbose)

    # Configure logging
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)


@cli.command("analyze")
@click.argument("document", type=click.File("r", encoding="utf-8"))
@click.option(
    "--provider", "provider_kind", type=click.Choice(available_provider_kinds()), help="Backend to use"
)
@click.option("--model", help="Model identifier")
@click.option("--base-url", help="Backend base URL")
@click.option("--api-key", help="API key (OpenRouter, or BYOK for the hosted tier)")
@click.option("--timeout", type=float, help="Per-request timeout in seconds")
@click.option("--turnstile-token", help="Verification token for the hosted free tier")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["human", "json"]), default="human",
    help="Output format",
)
@click.pass_context
def analyze(
    ctx: click.Context,
    document,
    provider_kind: str | None,
    model: str | None,
    base_url: str | None,
    api_key: str | None,
    timeout: float | None,
    turnstile_token: str | None,
    output_format: str,
) -> None:
    """Analyze a plain-text policy DOCUMENT (use - for stdin)."""
    distiller_ctx: DistillerContext = ctx.obj

    text = document.read()
    if not text.strip():
        err_console.print("[red]❌ Document is empty[/red]")
        ctx.exit(1)

    config = get_provider_config(
        distiller_ctx.project_root,
        kind=provider_kind,
        model_id=model,
        base_endpoint=base_url,
        credential=api_key,
        timeout_seconds=timeout,
    )
    problems = config.problems()
    if problems:
        err_console.print("[red]❌ Invalid provider configuration:[/red]")
        for problem in problems:
            err_console.print(f"  - {escape(problem)}")
        ctx.exit(1)

    provider = create_provider(config)
    if isinstance(provider, HostedGatewayProvider) and turnstile_token:
        provider.set_verification_token(turnstile_token)

    def show_progress(percent: int, step: str) -> None:
        if output_format == "human":
            err_console.print(f"[dim]{percent:>3}% {escape(step)}[/dim]")

    orchestrator = AnalysisOrchestrator.with_provider(provider, config)
    try:
        result = asyncio.run(orchestrator.run(text, progress=show_progress))
    except (CompletionError, AnalysisFailedError) as e:
        err_console.print(f"[red]❌ {escape(str(e))}[/red]")
        ctx.exit(1)

    if output_format == "json":
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        render_result(result)


@cli.command("status")
@click.option("--base-url", help="Hosted gateway URL")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["human", "json"]), default="human",
    help="Output format",
)
@click.pass_context
def status(ctx: click.Context, base_url: str | None, output_format: str) -> None:
    """Show hosted free tier availability."""
    distiller_ctx: DistillerContext = ctx.obj
    config = get_provider_config(
        distiller_ctx.project_root, kind=ProviderKind.HOSTED_FREE.value, base_endpoint=base_url
    )
    gateway = HostedGatewayProvider(config)

    try:
        tier = asyncio.run(gateway.check_and_cache_status())
    except CompletionError as e:
        err_console.print(f"[red]❌ {escape(e.message)}[/red]")
        ctx.exit(1)

    if output_format == "json":
        click.echo(json.dumps(tier.model_dump(), indent=2))
        return

    table = Table(title="Hosted free tier", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Available", "yes" if tier.free_available else "no")
    table.add_row("Tier", tier.current_tier or "unknown")
    table.add_row("Daily remaining", f"{tier.daily_remaining}/{tier.daily_limit}")
    if tier.balance_remaining is not None:
        table.add_row("Balance remaining", f"{tier.balance_remaining:.2f}")
    table.add_row("Resets at", tier.reset_at or "unknown")
    table.add_row("Zero data retention", "yes" if gateway.is_zdr_enabled() else "no")
    table.add_row(
        "Model", HostedGatewayProvider.format_model_display_name(tier.tier_model or config.model_id)
    )
    console.print(table)


@cli.command("providers")
def providers() -> None:
    """List supported providers and their defaults."""
    table = Table(title="Providers")
    table.add_column("Kind", style="bold")
    table.add_column("Name")
    table.add_column("Default model")
    table.add_column("Endpoint")
    table.add_column("API key")
    for kind, defaults in PROVIDER_DEFAULTS.items():
        table.add_row(
            kind.value,
            defaults.display_name,
            defaults.model_id,
            defaults.base_endpoint,
            "required" if defaults.requires_credential else "optional",
        )
    console.print(table)


def main() -> None:
    """Entry point for policy-distiller CLI."""
    import sys

    try:
        cli(obj=DistillerContext(), prog_name="policy-distiller")
    except SystemExit as e:
        sys.exit(e.code)
    except Exception as e:
        console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        logger.error("CLI error", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
