"""CLI for replaying scan streams through the gate discovery engine.

Commands:
    replay <file>                 - Stream JSON-lines scans through per-event workers
    audit <file> <tag_a> <tag_b>  - Explicitly classify two tags (including SEPARATE)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from gate_intel.config import DiscoveryConfig, settings
from gate_intel.discovery.coordinator import GateDiscoveryEngine
from gate_intel.discovery.report import QualityReport
from gate_intel.errors import ConfigurationError, InvalidEventError, UnscoredCandidateAccessError
from gate_intel.models import (
    CandidateSnapshot,
    Disposition,
    MergeSuggestion,
    ScanEvent,
    validate_scan_event,
)
from gate_intel.worker import InMemorySink, WorkerPool

app = typer.Typer(
    name="gate-intel",
    help="Gate discovery: cluster entry scans into gates and flag duplicates",
    no_args_is_help=True,
)
console = Console()

DISPOSITION_STYLES = {
    Disposition.AUTO_APPROVE: "green",
    Disposition.RECOMMEND_APPROVE: "cyan",
    Disposition.MANUAL_REVIEW: "yellow",
    Disposition.REJECT: "red",
    Disposition.MERGE_WITH_NEARBY: "magenta",
}


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def read_scans(path: Path) -> tuple[list[ScanEvent], int]:
    """Parse a JSON-lines file of scans.

    Returns:
        Tuple of (parsed scans, number of unparseable lines).
    """
    scans: list[ScanEvent] = []
    unparseable = 0
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                scans.append(ScanEvent.parse(line))
            except InvalidEventError as e:
                unparseable += 1
                logging.getLogger(__name__).warning("Line %d: %s", line_no, e)
    return scans, unparseable


def build_config(
    min_events: int | None,
    merge_m: float | None,
    virtual_m: float | None,
) -> DiscoveryConfig:
    base = DiscoveryConfig.from_settings().model_dump()
    if min_events is not None:
        base["min_events_for_candidate"] = min_events
    if merge_m is not None:
        base["merge_threshold_meters"] = merge_m
    if virtual_m is not None:
        base["virtual_gate_threshold_meters"] = virtual_m
    return DiscoveryConfig.from_mapping(base)


def candidates_table(event_id: str, snapshots: list[CandidateSnapshot]) -> Table:
    table = Table(title=f"Candidates ({event_id})")
    table.add_column("Tag", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Centroid")
    table.add_column("Staff", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Disposition")
    table.add_column("Merge into")

    for s in snapshots:
        centroid = f"{s.centroid[0]:.6f}, {s.centroid[1]:.6f}" if s.centroid else "-"
        score = f"{s.confidence_score:.3f}" if s.confidence_score is not None else "[dim]unscored[/dim]"
        if s.disposition is not None:
            style = DISPOSITION_STYLES[s.disposition]
            disposition = f"[{style}]{s.disposition.value}[/{style}]"
        else:
            disposition = "[dim]-[/dim]"
        table.add_row(
            s.declared_tag,
            str(s.count),
            centroid,
            str(s.distinct_staff_count),
            score,
            disposition,
            s.merge_target_id[1] if s.merge_target_id else "",
        )
    return table


def suggestions_table(suggestions: list[MergeSuggestion]) -> Table:
    table = Table(title="Merge suggestions")
    table.add_column("Primary")
    table.add_column("Candidate")
    table.add_column("Distance (m)", justify="right")
    table.add_column("Action")
    table.add_column("Confidence", justify="right")
    table.add_column("Overlap", justify="right")
    for s in suggestions:
        table.add_row(
            s.primary_id[1],
            s.candidate_id[1],
            f"{s.distance_meters:.1f}",
            s.recommended_action.value,
            f"{s.confidence:.3f}",
            f"{s.overlap_score:.2f}",
        )
    return table


def quality_line(report: QualityReport) -> str:
    variance = (
        f"{report.location_variance:.6f}" if report.location_variance is not None else "-"
    )
    return (
        f"[bold]Quality:[/bold] {report.physical_gates} physical, "
        f"{report.virtual_gate_suggestions} virtual, {report.merge_suggestions} merge; "
        f"variance {variance}; strategy {report.recommended_strategy}\n"
        f"  {report.recommendation}"
    )


@app.command()
def replay(
    path: Annotated[Path, typer.Argument(help="JSON-lines file of scan events")],
    min_events: Annotated[
        int | None, typer.Option("--min-events", help="Events required before scoring")
    ] = None,
    merge_m: Annotated[
        float | None, typer.Option("--merge-m", help="Merge threshold in meters")
    ] = None,
    virtual_m: Annotated[
        float | None, typer.Option("--virtual-m", help="Virtual-gate threshold in meters")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Replay a scan stream and show the resulting gate candidates."""
    configure_logging(verbose)

    if not path.exists():
        console.print(f"[red]Error:[/red] Path does not exist: {path}")
        raise typer.Exit(1)

    try:
        config = build_config(min_events, merge_m, virtual_m)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from None

    scans, unparseable = read_scans(path)
    sink = InMemorySink()

    async def _replay() -> WorkerPool:
        async with WorkerPool(sink, config_for=lambda _event_id: config) as pool:
            for scan in scans:
                await pool.submit(scan)
            await pool.join()
        return pool

    pool = asyncio.run(_replay())

    event_ids = sorted({c.event_id for c in sink.candidates.values()})
    if not event_ids:
        console.print("[yellow]No confirmed scans found.[/yellow]")

    rejected = pool.rejected_counts()
    for event_id in event_ids:
        snapshots = sorted(
            (c for c in sink.candidates.values() if c.event_id == event_id),
            key=lambda c: c.declared_tag,
        )
        console.print(candidates_table(event_id, snapshots))
        suggestions = sorted(
            (s for s in sink.suggestions.values() if s.primary_id[0] == event_id),
            key=lambda s: s.pair,
        )
        if suggestions:
            console.print(suggestions_table(suggestions))
        if rejected.get(event_id):
            console.print(f"[yellow]{rejected[event_id]} rejected scan(s)[/yellow]")
        worker = pool.worker(event_id)
        if worker is not None:
            console.print(quality_line(worker.quality_report()))

    for event_id, failure in pool.failures.items():
        console.print(f"[red]Worker {event_id} failed:[/red] {failure}")

    console.print(
        f"\n[bold]Summary:[/bold] {len(scans)} scans, {unparseable} unparseable, "
        f"{pool.unroutable} without event id, {len(sink.candidates)} candidates"
    )


@app.command()
def audit(
    path: Annotated[Path, typer.Argument(help="JSON-lines file of scan events")],
    tag_a: Annotated[str, typer.Argument(help="First declared tag")],
    tag_b: Annotated[str, typer.Argument(help="Second declared tag")],
    event_id: Annotated[
        str | None, typer.Option("--event-id", "-e", help="Event to audit (needed if several)")
    ] = None,
    min_events: Annotated[
        int | None, typer.Option("--min-events", help="Events required before scoring")
    ] = None,
) -> None:
    """Classify two tags explicitly, reporting SEPARATE when far apart."""
    configure_logging(False)

    if not path.exists():
        console.print(f"[red]Error:[/red] Path does not exist: {path}")
        raise typer.Exit(1)

    try:
        config = build_config(min_events, None, None)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from None

    scans, _ = read_scans(path)
    event_ids = sorted({s.event_id for s in scans if s.event_id})
    if event_id is None:
        if len(event_ids) != 1:
            console.print(
                f"[red]Error:[/red] File holds {len(event_ids)} events; pass --event-id"
            )
            raise typer.Exit(1)
        event_id = event_ids[0]

    valid: list[ScanEvent] = []
    for scan in scans:
        if scan.event_id != event_id or not scan.confirmed:
            continue
        try:
            validate_scan_event(scan)
        except InvalidEventError:
            continue
        valid.append(scan)

    engine = GateDiscoveryEngine.rebuild(event_id, config, valid)
    try:
        suggestion = engine.audit(tag_a, tag_b)
    except KeyError as e:
        console.print(f"[red]Error:[/red] {e.args[0]}")
        raise typer.Exit(1) from None
    except UnscoredCandidateAccessError as e:
        console.print(f"[yellow]Not enough data:[/yellow] {e}")
        raise typer.Exit(1) from None

    panel_content = [
        f"[bold]Event:[/bold] {event_id}",
        f"[bold]Pair:[/bold] {suggestion.primary_id[1]} <-> {suggestion.candidate_id[1]}",
        f"[bold]Distance:[/bold] {suggestion.distance_meters:.2f} m",
        f"[bold]Action:[/bold] {suggestion.recommended_action.value}",
        f"[bold]Confidence:[/bold] {suggestion.confidence:.3f}",
        f"[bold]Overlap:[/bold] time {suggestion.time_overlap:.2f}, "
        f"staff {suggestion.staff_overlap:.2f}",
    ]
    console.print(Panel("\n".join(panel_content), title="Pair audit"))


if __name__ == "__main__":
    app()
