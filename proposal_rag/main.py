"""
Proposal RAG - CLI Entry Point
-------------------------------
Exposes Typer commands for ingestion, answering, reusable blocks and
feedback diagnostics.

Usage:
    proposal-rag ingest proposals/ --client "Acme Health"   # Chunk, embed, index
    proposal-rag ask "How do we usually run discovery?"      # Single-shot answer
    proposal-rag ask "..." --json                            # Machine-readable
    proposal-rag ask "..." --rate bad --reason "too vague"   # Answer + record feedback
    proposal-rag blocks list --sort popular                  # Reusable blocks
    proposal-rag feedback full                               # All diagnostics + JSON report
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so proposal text with smart quotes
# does not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import orjson
import typer
import yaml
from dotenv import load_dotenv
from loguru import logger
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from proposal_rag.chunking.chunker import ProposalChunker
from proposal_rag.chunking.schemas import ChunkFilters
from proposal_rag.embedding.embedder import DIMENSIONS, Embedder, TextEmbedder
from proposal_rag.embedding.faiss_index import INDEX_DIR, ProposalIndex
from proposal_rag.embedding.pipeline import IngestionPipeline, load_documents
from proposal_rag.errors import InputError, ProposalRAGError
from proposal_rag.feedback.aggregator import chunk_problems, global_stats, query_type_stats, summarize
from proposal_rag.feedback.recommendations import recommendations_from_config
from proposal_rag.feedback.report import FeedbackReporter
from proposal_rag.feedback.store import FeedbackStore, ParsedFeedback
from proposal_rag.generation.generator import CompletionClient, completion_from_config
from proposal_rag.retrieval.blocks import BlockFilters, BlockLibrary, BlockSort
from proposal_rag.schemas import SectionLabel
from proposal_rag.serving.pipeline import AnswerOrchestrator, AnswerResult
from proposal_rag.utils.helpers import truncate_text
from proposal_rag.utils.logger import setup_from_config

app = typer.Typer(
    name="proposal-rag",
    help="Proposal knowledge base - ingest, ask, reuse, and learn from feedback",
    add_completion=False,
)
blocks_app = typer.Typer(help="Curate and reuse proposal blocks", add_completion=False)
feedback_app = typer.Typer(help="Feedback diagnostics", add_completion=False)
app.add_typer(blocks_app, name="blocks")
app.add_typer(feedback_app, name="feedback")

console = Console()


# --- Helpers ------------------------------------------------------------------

def _load_config(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        logger.warning(f"Config file {p} not found, using defaults")
        return {}
    with open(p, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _storage(cfg: dict, key: str, default: str) -> Path:
    return Path(cfg.get("storage", {}).get(key, default))


def make_embedder(cfg: dict) -> TextEmbedder:
    return Embedder.from_config(cfg)


def make_completion(cfg: dict) -> CompletionClient:
    return completion_from_config(cfg)


def _load_index(cfg: dict) -> ProposalIndex:
    dims = cfg.get("embedding", {}).get("dimensions", DIMENSIONS)
    return ProposalIndex.load_or_create(_storage(cfg, "index_dir", str(INDEX_DIR)), dimensions=dims)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        "config/config.yaml", "--config", "-c", help="Path to config YAML"
    ),
) -> None:
    """Load .env and config, set up logging."""
    load_dotenv()
    cfg = _load_config(config)
    setup_from_config(cfg)
    ctx.obj = cfg


# --- Ingest / ask ---------------------------------------------------------------

@app.command()
def ingest(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="A .txt/.md file or a folder of them"),
    client: str = typer.Option(..., "--client", help="Client the proposals were written for"),
    proposal_date: Optional[datetime] = typer.Option(
        None, "--date", formats=["%Y-%m-%d"], help="Proposal date (YYYY-MM-DD)"
    ),
    tags: list[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
    author: Optional[str] = typer.Option(None, "--author", help="Proposal author"),
    sector: Optional[str] = typer.Option(None, "--sector", help="Client sector"),
) -> None:
    """
    Chunk, embed, and index proposals.

    \b
    Steps:
      1. Read and clean every .txt / .md file, rejecting too-short ones
      2. Skip documents already indexed, resume partly indexed ones
      3. Chunk (800 chars, 100 overlap) and label proposal sections
      4. Embed chunks in parallel, insert each, report per-chunk outcomes
      5. Save the index
    """
    cfg = ctx.obj
    try:
        min_chars = ProposalChunker.from_config(cfg).min_chunk_size
        docs, rejected = load_documents(
            path,
            client=client,
            proposal_date=proposal_date.date() if proposal_date else None,
            tags=tags,
            author=author,
            sector=sector,
            min_chars=min_chars,
        )
    except InputError as exc:
        _fail(str(exc))

    if not docs:
        _fail(f"No ingestible documents found under {path}")

    index = _load_index(cfg)
    embedder = make_embedder(cfg)
    pipeline = IngestionPipeline.from_config(cfg, embedder, index)
    report = pipeline.ingest(docs, show_progress=True)
    report.rejected.extend(rejected)
    index.save(_storage(cfg, "index_dir", str(INDEX_DIR)))
    if isinstance(embedder, Embedder):
        logger.info(f"[Ingest] Embedding usage: {embedder.usage_summary()}")

    t = Table(title="Ingestion Summary", box=box.ROUNDED)
    t.add_column("Metric", style="cyan", no_wrap=True)
    t.add_column("Value", style="bold white", justify="right")
    t.add_row("Documents ingested", f"{report.documents_ingested}/{report.documents_seen}")
    t.add_row("Duplicates skipped", str(len(report.duplicates)))
    t.add_row("Files rejected", str(len(report.rejected)))
    t.add_row("Chunks indexed", f"[green]{report.chunks.succeeded}[/green]")
    t.add_row("Chunks failed", f"[red]{report.chunks.failed}[/red]")
    t.add_row("Index size", str(len(index)))
    console.print(t)

    for failure in report.chunks.failures[:10]:
        console.print(f"  [red]x[/red] {failure.item_id}: {failure.reason}")

    if report.chunks.failed and not report.chunks.succeeded:
        raise typer.Exit(1)


@app.command()
def ask(
    ctx: typer.Context,
    question: str = typer.Argument(..., help="Question about past proposals"),
    client: Optional[str] = typer.Option(None, "--client", help="Only this client's proposals"),
    sector: Optional[str] = typer.Option(None, "--sector", help="Only this sector"),
    tags: list[str] = typer.Option([], "--tag", "-t", help="Any of these tags"),
    section: Optional[SectionLabel] = typer.Option(None, "--section", help="Only chunks opening this section"),
    json_out: bool = typer.Option(False, "--json", help="Print result as JSON"),
    rate: Optional[str] = typer.Option(None, "--rate", help="Record feedback: good | bad"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why the answer was good or bad"),
) -> None:
    """Answer a question from the proposal index, citing sources."""
    cfg = ctx.obj
    filters = None
    if client or sector or tags or section:
        filters = ChunkFilters(client=client, sector=sector, tags=tags, section=section)

    try:
        orchestrator = AnswerOrchestrator.from_config(
            cfg, make_embedder(cfg), _load_index(cfg), make_completion(cfg)
        )
        result = orchestrator.answer(question, filters=filters)
    except ProposalRAGError as exc:
        _fail(str(exc))

    if json_out:
        typer.echo(orjson.dumps(result.to_dict(), option=orjson.OPT_INDENT_2).decode())
    else:
        _print_result(result)

    if rate:
        try:
            record = FeedbackStore.from_config(cfg).submit_feedback(
                question=result.query,
                answer=result.answer,
                rating=rate,
                chunk_ids=result.chunk_ids,
                query_type=result.query_type.value,
                reason=reason,
            )
        except ProposalRAGError as exc:
            _fail(f"Feedback not saved: {exc}")
        if not json_out:
            console.print(f"[dim]Feedback {record.id[:8]} saved ({record.rating.value})[/dim]")


def _print_result(result: AnswerResult) -> None:
    """Render an AnswerResult to the terminal using Rich."""
    console.print()
    console.print(
        Panel(
            Markdown(result.answer),
            title=f"[bold green]Answer[/bold green] [dim]({result.query_type.value})[/dim]",
            border_style="green" if result.grounded else "yellow",
            expand=True,
        )
    )

    if result.sources:
        table = Table("No.", "Client", "Filename", "Excerpt", box=box.SIMPLE, header_style="bold dim")
        for i, src in enumerate(result.sources, start=1):
            table.add_row(str(i), src["client"], src["filename"], truncate_text(src["content"], 80))
        console.print(table)

    console.print(
        f"[dim]embed={result.embedding_ms:.0f}ms  retrieve={result.retrieval_ms:.0f}ms  "
        f"generate={result.generation_ms:.0f}ms  mode={result.retrieval_mode}[/dim]\n"
    )


# --- Blocks ---------------------------------------------------------------------

def _library(cfg: dict, with_embedder: bool = False) -> BlockLibrary:
    return BlockLibrary(
        _storage(cfg, "blocks_path", "data/blocks.json"),
        embedder=make_embedder(cfg) if with_embedder else None,
    )


@blocks_app.command("list")
def blocks_list(
    ctx: typer.Context,
    tags: list[str] = typer.Option([], "--tag", "-t", help="Any of these tags"),
    author: Optional[str] = typer.Option(None, "--author", help="Author id"),
    text: Optional[str] = typer.Option(None, "--text", help="Substring of title or content"),
    sort: BlockSort = typer.Option(BlockSort.RECENT, "--sort", help="recent | popular | last_used"),
    limit: int = typer.Option(20, "--limit", help="Maximum blocks to show"),
) -> None:
    """List reusable blocks."""
    blocks = _library(ctx.obj).list_blocks(
        BlockFilters(tags=tags, author_id=author, text=text), sort=sort, limit=limit
    )
    if not blocks:
        console.print("[dim]No blocks found.[/dim]")
        return
    t = Table(title=f"Reusable Blocks ({sort.value})", box=box.ROUNDED)
    t.add_column("ID", style="dim", no_wrap=True)
    t.add_column("Title", style="cyan")
    t.add_column("Tags")
    t.add_column("Uses", justify="right")
    t.add_column("Last used", style="dim")
    for b in blocks:
        t.add_row(b.id[:8], b.title, ", ".join(b.tags), str(b.usage_count), b.last_used_at.strftime("%Y-%m-%d"))
    console.print(t)


@blocks_app.command("add")
def blocks_add(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Block title"),
    content: Optional[str] = typer.Option(None, "--content", help="Block text"),
    file: Optional[Path] = typer.Option(None, "--file", help="Read block text from a file"),
    tags: list[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
    author: Optional[str] = typer.Option(None, "--author", help="Author id"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Usage notes"),
) -> None:
    """Save a new reusable block."""
    if file is not None:
        content = file.read_text(encoding="utf-8")
    try:
        block = _library(ctx.obj, with_embedder=True).create_block(
            title, content or "", tags=tags, author_id=author, notes=notes
        )
    except ProposalRAGError as exc:
        _fail(str(exc))
    console.print(f"[green][OK][/green] Block {block.id} saved")


@blocks_app.command("use")
def blocks_use(
    ctx: typer.Context,
    block_ids: list[str] = typer.Argument(..., help="Block ids to mark as used"),
) -> None:
    """Record usage of one or more blocks."""
    outcome = _library(ctx.obj).bump_usage_many(block_ids)
    for item in outcome.items:
        mark = "[green]ok[/green]" if item.ok else f"[red]failed[/red] ({item.reason})"
        console.print(f"  {item.item_id}: {mark}")
    console.print(f"{outcome.succeeded}/{outcome.total} usage update(s) applied")
    if outcome.failed:
        raise typer.Exit(1)


@blocks_app.command("suggest")
def blocks_suggest(
    ctx: typer.Context,
    context: str = typer.Argument(..., help="Drafting context to match blocks against"),
    limit: int = typer.Option(5, "--limit", help="Maximum suggestions"),
    tags: list[str] = typer.Option([], "--tag", "-t", help="Any of these tags"),
    exclude: list[str] = typer.Option([], "--exclude", help="Block id to leave out (repeatable)"),
) -> None:
    """Suggest blocks for a drafting context."""
    try:
        suggestions = _library(ctx.obj, with_embedder=True).suggest_blocks(
            context, limit=limit, tags=tags, exclude_ids=exclude
        )
    except ProposalRAGError as exc:
        _fail(str(exc))
    if not suggestions:
        console.print("[dim]No blocks to suggest.[/dim]")
        return
    t = Table(title="Suggested Blocks", box=box.ROUNDED)
    t.add_column("ID", style="dim", no_wrap=True)
    t.add_column("Title", style="cyan")
    t.add_column("Score", justify="right")
    t.add_column("Similarity", justify="right")
    t.add_column("Why", style="dim")
    for s in suggestions:
        t.add_row(s.block.id[:8], s.block.title, f"{s.score:.3f}", f"{s.similarity:.3f}", s.source)
    console.print(t)


# --- Feedback diagnostics -------------------------------------------------------

def _fetch_feedback(cfg: dict) -> ParsedFeedback:
    return FeedbackStore.from_config(cfg).load()


def _sample_size(cfg: dict) -> int:
    return cfg.get("feedback", {}).get("sample_size", 3)


def _stats_view(cfg: dict, reporter: FeedbackReporter) -> dict:
    parsed = _fetch_feedback(cfg)
    stats = global_stats(parsed.records)
    reporter.print_stats(stats, parsed.malformed_count)
    return {"stats": stats.to_dict(), "malformed_records": parsed.malformed_count}


def _query_types_view(cfg: dict, reporter: FeedbackReporter) -> dict:
    parsed = _fetch_feedback(cfg)
    views = query_type_stats(parsed.records, _sample_size(cfg))
    reporter.print_query_types(views)
    return {"query_types": [v.to_dict() for v in views]}


def _chunks_view(cfg: dict, reporter: FeedbackReporter) -> dict:
    parsed = _fetch_feedback(cfg)
    problems = chunk_problems(parsed.records, _sample_size(cfg))
    reporter.print_chunks(problems)
    return {"problem_chunks": [p.to_dict() for p in problems]}


def _suggestions_view(cfg: dict, reporter: FeedbackReporter) -> dict:
    parsed = _fetch_feedback(cfg)
    summary = summarize(parsed.records, parsed.malformed_count, _sample_size(cfg))
    recs = recommendations_from_config(summary, cfg)
    reporter.print_recommendations(recs)
    return {"recommendations": [r.to_dict() for r in recs]}


def _run_view(name: str, view: Callable[[dict, FeedbackReporter], dict], cfg: dict) -> Optional[dict]:
    """Run one diagnostic view; a store or input failure is reported, not raised."""
    reporter = FeedbackReporter(console)
    reporter.print_banner(name)
    try:
        return view(cfg, reporter)
    except ProposalRAGError as exc:
        logger.error(f"[Feedback] {name} failed: {exc}")
        console.print(f"[red]{name} failed: {exc}[/red]")
        return None


def _single_view(ctx: typer.Context, name: str, view) -> None:
    if _run_view(name, view, ctx.obj) is None:
        raise typer.Exit(1)


@feedback_app.command("stats")
def feedback_stats(ctx: typer.Context) -> None:
    """Overall good / bad counts."""
    _single_view(ctx, "Feedback Statistics", _stats_view)


@feedback_app.command("query-types")
def feedback_query_types(ctx: typer.Context) -> None:
    """Success rate per query type."""
    _single_view(ctx, "Query Type Performance", _query_types_view)


@feedback_app.command("chunks")
def feedback_chunks(ctx: typer.Context) -> None:
    """Chunks most often cited by bad answers."""
    _single_view(ctx, "Problematic Chunks", _chunks_view)


@feedback_app.command("suggestions")
def feedback_suggestions(ctx: typer.Context) -> None:
    """Improvement recommendations."""
    _single_view(ctx, "Improvement Suggestions", _suggestions_view)


@feedback_app.command("full")
def feedback_full(ctx: typer.Context) -> None:
    """Run every diagnostic in sequence and save a JSON report."""
    cfg = ctx.obj
    views = [
        ("Feedback Statistics", _stats_view),
        ("Query Type Performance", _query_types_view),
        ("Problematic Chunks", _chunks_view),
        ("Improvement Suggestions", _suggestions_view),
    ]
    report: dict = {}
    errors: dict[str, str] = {}
    for name, view in views:
        result = _run_view(name, view, cfg)
        if result is None:
            errors[name] = "fetch failed"
        else:
            report.update(result)

    full = FeedbackReporter.build_report(None, None, errors)
    full.update(report)
    path = FeedbackReporter.save_report(full, _storage(cfg, "report_path", "data/feedback_report.json"))
    console.print(f"\n[blue]Full report:[/blue] {path}")
    if errors:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
