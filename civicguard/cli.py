"""CivicGuard CLI: operator tools for proximity checks and moderation."""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from civicguard import __version__
from civicguard.errors import CivicGuardError
from civicguard.geo.proximity import Coordinate

console = Console()


class CoordinateType(click.ParamType):
    """``LAT,LNG`` parsed into a validated :class:`Coordinate`."""

    name = "lat,lng"

    def convert(self, value, param, ctx):
        if isinstance(value, Coordinate):
            return value
        try:
            lat_text, lng_text = value.split(",")
            return Coordinate(float(lat_text), float(lng_text))
        except (ValueError, CivicGuardError):
            self.fail(f"{value!r} is not a valid LAT,LNG pair", param, ctx)


COORDINATE = CoordinateType()


def _engine(ctx: click.Context):
    from civicguard.config import load_config
    from civicguard.engine import CivicGuardEngine

    if ctx.obj.get("engine") is None:
        ctx.obj["engine"] = CivicGuardEngine(load_config(ctx.obj.get("config_path")))
    return ctx.obj["engine"]


def _fail(err: CivicGuardError) -> None:
    console.print(f"[red]{err.code}[/] {err.message}")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, envvar="CIVICGUARD_CONFIG", help="YAML config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """CivicGuard: neighborhood issue access control and moderation."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_path", config_path)
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


# ── Geo ──────────────────────────────────────────────────────────────


@main.command()
@click.option("--from", "origin", type=COORDINATE, required=True, help="Start point as LAT,LNG")
@click.option("--to", "target", type=COORDINATE, required=True, help="End point as LAT,LNG")
def distance(origin: Coordinate, target: Coordinate):
    """Great-circle distance and initial bearing between two points."""
    from civicguard.geo.proximity import bearing_degrees, distance_km

    km = distance_km(origin, target)
    console.print(f"Distance: [cyan]{km:.3f} km[/]")
    console.print(f"Bearing:  [cyan]{bearing_degrees(origin, target):.1f}°[/]")


@main.command()
@click.option("--at", "center", type=COORDINATE, required=True, help="Search center as LAT,LNG")
@click.option("--radius", "-r", type=float, default=None, help="Radius in km (0.1 - 5)")
@click.option("--status", "-s", multiple=True, help="Filter by status")
@click.option("--category", "-c", multiple=True, help="Filter by category")
@click.option("--limit", "-n", type=int, default=None)
@click.pass_context
def nearby(ctx, center: Coordinate, radius: float | None, status: tuple, category: tuple, limit: int | None):
    """List visible issues near a point, nearest first."""
    try:
        page = _engine(ctx).list_nearby(center, radius, list(status), list(category), limit)
    except CivicGuardError as err:
        _fail(err)
        return

    if not page.items:
        console.print(f"[yellow]No issues within {page.radius_km} km.[/]")
        return

    table = Table(title=f"Issues within {page.radius_km} km ({page.total} found)")
    table.add_column("Distance", justify="right", style="green")
    table.add_column("Status")
    table.add_column("Category")
    table.add_column("Title", style="cyan")
    table.add_column("ID", style="dim")
    for item in page.items:
        table.add_row(
            f"{item.distance_km:.2f} km",
            item.issue.status.value,
            item.issue.category.value,
            item.issue.title[:50],
            item.issue.id,
        )
    console.print(table)


@main.command()
@click.option("--at", "center", type=COORDINATE, required=True, help="Center as LAT,LNG")
@click.option("--count", "-n", type=int, default=5, show_default=True)
@click.pass_context
def closest(ctx, center: Coordinate, count: int):
    """Show the issues nearest to a point."""
    try:
        items = _engine(ctx).closest_issues(center, count)
    except CivicGuardError as err:
        _fail(err)
        return

    if not items:
        console.print("[yellow]No issues nearby.[/]")
        return
    for n, item in enumerate(items, 1):
        console.print(f"{n}. [cyan]{item.issue.title}[/] [green]{item.distance_km:.2f} km[/] [dim]{item.issue.id}[/]")


@main.command()
@click.option("--at", "center", type=COORDINATE, required=True, help="Center as LAT,LNG")
@click.pass_context
def stats(ctx, center: Coordinate):
    """Summarize the issues around a point."""
    engine = _engine(ctx)
    groups = engine.nearby_by_distance(center)
    summary = engine.location_statistics(center)

    rings = Table(title=f"Issues around {center.latitude}, {center.longitude}")
    rings.add_column("Range")
    rings.add_column("Issues", justify="right", style="green")
    for label, items in groups.items():
        rings.add_row(label, str(len(items)))
    for radius, count in summary.by_distance.items():
        rings.add_row(f"within {radius:g} km", str(count))
    console.print(rings)

    lines = [f"[bold]Total:[/] {summary.total}"]
    if summary.by_status:
        lines.append("[bold]By status:[/] " + ", ".join(f"{k} {v}" for k, v in sorted(summary.by_status.items())))
    if summary.by_category:
        lines.append(
            "[bold]By category:[/] " + ", ".join(f"{k} {v}" for k, v in sorted(summary.by_category.items()))
        )
    console.print(Panel("\n".join(lines), title="Location statistics"))


# ── Lifecycle ────────────────────────────────────────────────────────


@main.command()
@click.argument("issue_id")
@click.pass_context
def history(ctx, issue_id: str):
    """Show the status history of an issue."""
    try:
        entries = _engine(ctx).lifecycle.get_history(issue_id)
    except CivicGuardError as err:
        _fail(err)
        return

    if not entries:
        console.print("[yellow]No status history recorded.[/]")
        return

    table = Table(title=f"Status history of {issue_id}")
    table.add_column("When", style="dim")
    table.add_column("From")
    table.add_column("To", style="cyan")
    table.add_column("By")
    table.add_column("Comment")
    for e in entries:
        table.add_row(
            e.timestamp,
            e.previous_status.value if e.previous_status else "-",
            e.new_status.value,
            e.actor_id,
            e.comment[:60],
        )
    console.print(table)


# ── Moderation ───────────────────────────────────────────────────────


@main.command()
@click.option("--status", type=click.Choice(["pending", "reviewed", "all"]), default="pending")
@click.option("--flag-type", default=None, help="Only issues with flags of this type")
@click.option("--limit", "-n", type=int, default=50)
@click.pass_context
def flagged(ctx, status: str, flag_type: str | None, limit: int):
    """Show the flagged-issue review queue."""
    try:
        issues, total = _engine(ctx).moderation.list_flagged(status, flag_type, limit)
    except CivicGuardError as err:
        _fail(err)
        return

    if not issues:
        console.print("[green]Nothing to review.[/]")
        return

    table = Table(title=f"Flagged issues ({status}, {total} total)")
    table.add_column("Flags", justify="right", style="red")
    table.add_column("Hidden", justify="center")
    table.add_column("Title", style="cyan")
    table.add_column("ID", style="dim")
    for issue in issues:
        table.add_row(
            str(issue.flag_count),
            "[red]Y[/]" if not issue.visible else "[green]N[/]",
            issue.title[:50],
            issue.id,
        )
    console.print(table)


@main.command()
@click.argument("issue_id")
@click.option("--action", type=click.Choice(["approve", "reject", "delete"]), required=True)
@click.option("--reviewer", required=True, help="Admin user id")
@click.option("--comment", default="", help="Review comment")
@click.pass_context
def review(ctx, issue_id: str, action: str, reviewer: str, comment: str):
    """Resolve all outstanding flags on an issue."""
    try:
        result = _engine(ctx).review(issue_id, reviewer, action, comment)
    except CivicGuardError as err:
        _fail(err)
        return

    visibility = "[green]visible[/]" if result.visible else "[red]hidden[/]"
    console.print(f"Reviewed {issue_id}: {result.action.value}, {result.resolved_count} flag(s) resolved")
    console.print(f"  Issue is now {visibility}")
    if result.marked_for_removal:
        console.print("  [yellow]Marked for removal[/]")


@main.command(name="ban-check")
@click.argument("user_id")
@click.pass_context
def ban_check(ctx, user_id: str):
    """Evaluate a user's flagging history against the ban heuristic."""
    try:
        stats = _engine(ctx).flagging_stats(user_id)
    except CivicGuardError as err:
        _fail(err)
        return

    rec = stats.recommendation
    sig = rec.signal
    lines = [
        f"Recent flags (7d): {sig.recent_flag_count}",
        f"Total flags:       {sig.total_flag_count}",
        f"Reviewed flags:    {sig.reviewed_flag_count}",
        f"Rejected flags:    {sig.rejected_flag_count}",
        f"Rejection rate:    {sig.rejection_rate:.1%}",
    ]
    if stats.by_type:
        lines.append("By type:           " + ", ".join(f"{k}={v}" for k, v in sorted(stats.by_type.items())))
    verdict = "[red]BAN RECOMMENDED[/]" if rec.should_ban else "[green]No action[/]"
    console.print(Panel("\n".join(lines), title=f"{user_id}: {verdict}"))
    for reason in rec.reasons:
        console.print(f"  [red]![/] {reason}")


if __name__ == "__main__":
    main()
