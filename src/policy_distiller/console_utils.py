"""
Shared console utilities for policy-distiller.

Holds the Rich consoles and the small renderers the CLI uses for reports.

policy_distiller/src/policy_distiller/console_utils.py
"""

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from policy_distiller.analysis.models import AnalysisResult, RiskLevel

__all__ = ["console", "err_console", "render_result", "SEVERITY_STYLES"]

# Global console instances used throughout policy-distiller
console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def render_result(result: AnalysisResult, target: Console = console) -> None:
    """Print a human-readable report for one analysis run."""
    target.rule(f"[bold]Policy analysis[/bold] ({result.provider_name})")

    summary = result.summary
    if not summary.is_empty:
        target.print("\n[bold blue]Summary[/bold blue]")
        target.print(escape(summary.brief))
        for point in summary.key_points:
            target.print(f"  • {escape(point)}")

    if result.scorecard is not None:
        scorecard = result.scorecard
        target.print(
            f"\n[bold blue]Privacy scorecard[/bold blue]: "
            f"{scorecard.overall_score}/100 ([bold]{scorecard.overall_grade}[/bold])"
        )
        table = Table(show_header=True, header_style="bold")
        table.add_column("Category")
        table.add_column("Score", justify="right")
        table.add_column("Weight", justify="right")
        table.add_column("Assessment")
        for name, category in scorecard.categories.items():
            table.add_row(name, f"{category.score:g}", f"{category.weight}%", escape(category.summary))
        target.print(table)
        for concern in scorecard.top_concerns:
            target.print(f"  [red]-[/red] {escape(concern)}")
        for positive in scorecard.positive_aspects:
            target.print(f"  [green]+[/green] {escape(positive)}")

    if result.risks:
        target.print(f"\n[bold blue]Privacy risks[/bold blue] ({len(result.risks)})")
        for risk in result.risks:
            style = SEVERITY_STYLES[risk.severity]
            heading = escape(risk.title or risk.category)
            target.print(f"  [{style}]{risk.severity.value.upper()}[/{style}] {heading}: {escape(risk.description)}")
            if risk.recommendation:
                target.print(f"    [dim]{escape(risk.recommendation)}[/dim]")

    if result.key_terms:
        target.print(f"\n[bold blue]Key terms[/bold blue] ({len(result.key_terms)})")
        for term in result.key_terms:
            target.print(f"  [bold]{escape(term.term)}[/bold]: {escape(term.definition)}")

    if result.has_partial_failures:
        target.print("\n[yellow]Some sections could not be generated:[/yellow]")
        for failure in result.partial_failures:
            target.print(f"  [yellow]{failure.aspect_name}[/yellow]: {escape(failure.error_message)}")
