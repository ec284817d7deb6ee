"""Console rendering of improvement previews and cycle reports."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .applicator import ActionPreview, ImprovementResult
from .service import CycleResult


class ImprovementPreview:
    """
    Renders what an improvement run would do, or did.

    Nothing here writes to a project; it only prints.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_actions(self, previews: list[ActionPreview]):
        """Show which suggested actions would be applied."""
        if not previews:
            self.console.print("[dim]No suggested actions.[/dim]")
            return

        table = Table(title="Improvement Preview", show_header=True)
        table.add_column("#", width=3)
        table.add_column("Action", style="cyan")
        table.add_column("Title")
        table.add_column("Confidence", justify="right", width=10)
        table.add_column("Status", width=8)

        for i, preview in enumerate(previews, 1):
            action = preview.action
            title = action.title
            if len(title) > 40:
                title = title[:37] + "..."
            status = "[green]apply[/green]" if preview.would_apply else "[yellow]skip[/yellow]"
            table.add_row(str(i), action.type.value, title, f"{action.confidence:.2f}", status)

        self.console.print(table)

        would_apply = sum(1 for p in previews if p.would_apply)
        self.console.print(
            f"\n[bold]Total:[/bold] {len(previews)} actions "
            f"([green]{would_apply} would apply[/green], "
            f"[yellow]{len(previews) - would_apply} skipped[/yellow])"
        )

    def show_result(self, result: ImprovementResult):
        """Show the outcome of an apply run."""
        for applied in result.applied:
            icon = "[green]✓[/green]" if applied.success else "[red]✗[/red]"
            self.console.print(f"  {icon} {applied.result}")
        for skipped in result.skipped:
            self.console.print(f"  [yellow]⏭[/yellow] [dim]{skipped.action.title}: {skipped.reason}[/dim]")
        self.console.print(f"[bold]{result.summary}[/bold]")

    def show_cycle(self, result: CycleResult):
        """Show an improvement cycle report."""
        analysis = result.analysis
        perf = analysis.recent_performance
        border = "green" if result.new_version_created else "yellow"

        lines = [
            f"[bold]Orchestrator:[/bold] {result.orchestrator_id}",
            f"[bold]Success rate:[/bold] {perf.success_rate * 100:.1f}% over {perf.task_count} tasks",
            f"[bold]Confidence:[/bold] {analysis.confidence:.2f}",
            f"[bold]Result:[/bold] {result.reason}",
        ]
        if result.ab_test_id:
            lines.append(f"[bold]A/B test:[/bold] {result.ab_test_id}")
        self.console.print(Panel("\n".join(lines), title="Improvement Cycle", border_style=border))

        if analysis.issues:
            table = Table(show_header=True)
            table.add_column("Issue", style="cyan")
            table.add_column("Severity", width=8)
            table.add_column("Description")
            for issue in analysis.issues:
                style = "red" if issue.severity.value == "high" else "yellow"
                table.add_row(issue.type.value, f"[{style}]{issue.severity.value}[/{style}]", issue.description)
            self.console.print(table)

        if analysis.proposed_changes:
            table = Table(title="Proposed Changes", show_header=True)
            table.add_column("Component", style="cyan")
            table.add_column("Current")
            table.add_column("Proposed")
            table.add_column("Confidence", justify="right", width=10)
            for change in analysis.proposed_changes:
                table.add_row(
                    change.component,
                    str(change.current_value),
                    str(change.proposed_value)[:40],
                    f"{change.confidence:.2f}",
                )
            self.console.print(table)
