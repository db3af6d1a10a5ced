"""
Feedback Diagnostics Report
----------------------------
Rich console rendering for the feedback commands, plus a JSON report
written by `feedback full`.
"""
from __future__ import annotations

from pathlib import Path

from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from proposal_rag.feedback.aggregator import ChunkProblem, FeedbackSummary, GlobalStats, QueryTypeStats
from proposal_rag.feedback.recommendations import Recommendation, Severity
from proposal_rag.utils.helpers import save_json, truncate_text, utcnow

console = Console()

TOP_CHUNKS_SHOWN = 10

_SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
}


class FeedbackReporter:
    """Prints each diagnostic view and saves the combined report."""

    def __init__(self, out: Console = console) -> None:
        self.console = out

    # --- Views ----------------------------------------------------------------

    def print_stats(self, stats: GlobalStats, malformed: int = 0) -> None:
        t = Table(title="Overall Feedback", box=box.ROUNDED)
        t.add_column("Metric", style="cyan", no_wrap=True)
        t.add_column("Value", style="bold white", justify="right")
        t.add_row("Total feedback entries", str(stats.total))
        if stats.has_data:
            t.add_row("Good ratings", f"[green]{stats.good}[/green] ({stats.good_pct:.1f}%)")
            t.add_row("Bad ratings", f"[red]{stats.bad}[/red] ({stats.bad_pct:.1f}%)")
        else:
            t.add_row("Good / bad", "[dim]no data[/dim]")
        if malformed:
            t.add_row("Malformed records skipped", f"[yellow]{malformed}[/yellow]")
        self.console.print(t)

    def print_query_types(self, query_types: list[QueryTypeStats]) -> None:
        if not query_types:
            self.console.print("[dim]No query type data yet.[/dim]")
            return
        t = Table(title="Query Type Performance", box=box.ROUNDED)
        t.add_column("Query type", style="cyan")
        t.add_column("Total", justify="right")
        t.add_column("Good", style="green", justify="right")
        t.add_column("Bad", style="red", justify="right")
        t.add_column("Success", style="bold", justify="right")
        t.add_column("Recent reasons", style="dim")
        for qt in query_types:
            t.add_row(
                qt.query_type.value,
                str(qt.total),
                str(qt.good),
                str(qt.bad),
                f"{qt.success_rate * 100:.1f}%",
                "\n".join(truncate_text(r, 100) for r in qt.recent_reasons),
            )
        self.console.print(t)

    def print_chunks(self, chunks: list[ChunkProblem], top: int = TOP_CHUNKS_SHOWN) -> None:
        if not chunks:
            self.console.print("[dim]No chunks cited by bad feedback.[/dim]")
            return
        t = Table(title=f"Top Problematic Chunks (of {len(chunks)})", box=box.ROUNDED)
        t.add_column("Chunk ID", style="cyan", no_wrap=True)
        t.add_column("Bad", style="red", justify="right")
        t.add_column("Sample questions")
        t.add_column("Reasons", style="dim")
        for chunk in chunks[:top]:
            t.add_row(
                chunk.chunk_id,
                str(chunk.count),
                "\n".join(f"{q}..." for q in chunk.questions),
                "\n".join(truncate_text(r, 100) for r in chunk.reasons),
            )
        self.console.print(t)

    def print_recommendations(self, recs: list[Recommendation]) -> None:
        self.console.print("[bold cyan]Improvement Recommendations:[/bold cyan]")
        for rec in recs:
            style = _SEVERITY_STYLE[rec.severity]
            self.console.print(f"  [{style}]{rec.severity.value.upper():8s}[/{style}] {rec.message}")
            for action in rec.actions:
                self.console.print(f"             - {action}")

    def print_banner(self, title: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold cyan]Proposal RAG[/bold cyan]\n[white]{title}[/white]",
                box=box.DOUBLE_EDGE,
                expand=False,
            )
        )

    # --- Persistence ----------------------------------------------------------

    @staticmethod
    def build_report(
        summary: FeedbackSummary | None,
        recommendations: list[Recommendation] | None,
        errors: dict[str, str] | None = None,
    ) -> dict:
        report = {"generated_at": utcnow().isoformat()}
        if summary is not None:
            report.update(summary.to_dict())
        report["recommendations"] = [r.to_dict() for r in recommendations or []]
        report["errors"] = errors or {}
        return report

    @staticmethod
    def save_report(report: dict, path: str | Path) -> Path:
        path = Path(path)
        save_json(report, path)
        logger.info(f"[FeedbackReport] Report saved -> {path}")
        return path
