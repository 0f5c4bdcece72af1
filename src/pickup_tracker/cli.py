"""
Pickup Tracker - Command Line Interface
Summaries, stop timelines, exports and alerts from snapshot JSON files
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .config import Environment, get_settings
from .data.models import PickupStatus, parse_timestamp
from .data.normalizer import Snapshot, SnapshotError, index_by_id
from .processing import (
    BREAKDOWN_KEYS,
    CompletionStatisticsCalculator,
    MissedSchoolMonitor,
    PickupAggregator,
    StopExtractor,
    TabularExportFormatter,
    TimeWindowGrouper,
    ValidationError,
    filter_records,
    resolve_driver_name,
    resolve_route_name,
)

console = Console()

SNAPSHOT_PATH = click.Path(exists=True, dir_okay=False)


def _load_snapshot(path: str) -> Snapshot:
    try:
        return Snapshot.from_file(path)
    except SnapshotError as e:
        raise click.ClickException(str(e))


def _parse_now(value: Optional[str]) -> datetime:
    """Reference time from ``--now``; the local clock when not given."""
    if not value:
        return datetime.now().astimezone()
    parsed = parse_timestamp(value)
    if parsed is None:
        raise click.BadParameter(f"Cannot parse time '{value}'", param_hint='--now')
    return parsed


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime('%Y-%m-%d %H:%M') if value else "-"


# ============================================================================
# CLI COMMANDS
# ============================================================================

@click.group()
@click.option('--env', type=click.Choice([e.value for e in Environment]), default=None,
              help='Environment (development/testing/production)')
@click.option('--now', 'now', default=None, help='Reference time as ISO-8601 (default: current time)')
@click.pass_context
def cli(ctx, env, now):
    """Pickup Tracker route summary engine"""
    ctx.ensure_object(dict)
    ctx.obj['ENV'] = env
    ctx.obj['settings'] = get_settings(Environment(env) if env else None)
    ctx.obj['NOW'] = _parse_now(now)


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--search', default=None, help='Filter by driver or route name')
@click.pass_context
def summary(ctx, snapshot, search):
    """Show completion statistics for the pickup history"""
    settings = ctx.obj['settings']
    now = ctx.obj['NOW']
    data = _load_snapshot(snapshot)

    records = filter_records(data.history, search)
    stats = CompletionStatisticsCalculator(settings).calculate(records, now)
    buckets = TimeWindowGrouper(settings).group(records, now)

    table = Table(title="Route Completion", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total Routes", str(stats.total_routes))
    table.add_row("Students Picked Up", str(stats.total_students_picked_up))
    table.add_row("Students Assigned", str(stats.total_students_assigned))
    table.add_row("Completion Rate", f"{stats.average_completion_rate}%")
    table.add_row("Recent Routes", str(stats.recent_routes))

    console.print(table)
    console.print(Panel(
        "\n".join(f"{label}: {len(items)}" for label, items in buckets.labeled().items()),
        title="History by Period",
        border_style="cyan",
    ))


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--session', 'session_id', type=int, default=None, help='Only pings of this session')
@click.pass_context
def stops(ctx, snapshot, session_id):
    """Extract dwell stops from the GPS track"""
    data = _load_snapshot(snapshot)
    pings = data.pings
    if session_id is not None:
        pings = [p for p in pings if p.session_id == session_id]

    extractor = StopExtractor(ctx.obj['settings'])
    found = extractor.extract_stops(pings, data.schools)
    track = extractor.summarize_track(pings, data.schools, stops=found)

    table = Table(title="Stops", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Arrival")
    table.add_column("Departure")
    table.add_column("Minutes", justify="right")
    table.add_column("School", style="cyan")

    for i, stop in enumerate(found, 1):
        school = stop.matched_school.name if stop.matched_school else "-"
        if stop.is_ongoing:
            school += " (ongoing)"
        table.add_row(str(i), _format_time(stop.arrival_time), _format_time(stop.departure_time),
                      f"{stop.duration_minutes:.1f}", school)

    console.print(table)
    console.print(Panel(
        f"Pings: {track.ping_count}\n"
        f"Distance: {track.total_distance_km} km\n"
        f"Duration: {track.duration_minutes} min\n"
        f"Average Speed: {track.average_speed_kmh} km/h\n"
        f"Max Speed: {track.max_speed_kmh} km/h\n"
        f"Schools Visited: {track.schools_visited}",
        title="Track Summary",
        border_style="cyan",
    ))


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--session', 'session_id', type=int, required=True, help='Session to break down')
@click.pass_context
def pickups(ctx, snapshot, session_id):
    """Break a route run down by school"""
    data = _load_snapshot(snapshot)
    record = next((r for r in data.history if r.session_id == session_id), None)
    if record is not None:
        details = record.pickup_details
    else:
        details = [p for p in data.pickups if p.session_id == session_id]
    if not details:
        console.print(f"[yellow]No pickups recorded for session {session_id}[/yellow]")
        return

    aggregator = PickupAggregator(ctx.obj['settings'])
    groups = aggregator.group_by_school(details, data.students, data.schools)
    counts = aggregator.count_by_status(details, data.students, data.schools)

    table = Table(title=f"Session {session_id}", show_header=True, header_style="bold magenta")
    table.add_column("School", style="cyan")
    table.add_column("Picked Up")
    table.add_column("Not Picked Up")
    table.add_column("No Show", justify="right")
    table.add_column("Absent", justify="right")

    for school_name, group in groups.items():
        per_status = counts[school_name]
        table.add_row(
            school_name,
            ", ".join(aggregator.resolve_names(group.picked_up, data.students)) or "-",
            ", ".join(aggregator.resolve_names(group.not_picked_up, data.students)) or "-",
            str(per_status[PickupStatus.NO_SHOW]),
            str(per_status[PickupStatus.ABSENT]),
        )

    console.print(table)


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--field', 'timestamp_field', default='completed_at', help='Timestamp field to bucket on')
@click.pass_context
def buckets(ctx, snapshot, timestamp_field):
    """Group the pickup history into time periods"""
    data = _load_snapshot(snapshot)
    grouped = TimeWindowGrouper(ctx.obj['settings']).group(data.history, ctx.obj['NOW'], timestamp_field)

    for label, records in grouped.labeled().items():
        table = Table(title=f"{label} ({len(records)})", show_header=True, header_style="bold magenta")
        table.add_column("Date")
        table.add_column("Route", style="cyan")
        table.add_column("Driver")
        table.add_column("Picked Up", justify="right")

        for record in records:
            table.add_row(
                record.date or "-",
                resolve_route_name(record.route_id, record.route),
                resolve_driver_name(record.driver) or "-",
                f"{record.students_picked_up}/{record.total_students}",
            )
        console.print(table)


@cli.command()
@click.argument('kind', type=click.Choice(['pickups', 'history', 'absences']))
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--output', '-o', type=click.Path(dir_okay=True), default=None,
              help='File or directory to write to (default: stdout)')
@click.option('--search', default=None, help='Filter by driver or route name')
@click.option('--start', 'start_date', default=None, help='First absence day (YYYY-MM-DD)')
@click.option('--end', 'end_date', default=None, help='Last absence day (YYYY-MM-DD)')
@click.pass_context
def export(ctx, kind, snapshot, output, search, start_date, end_date):
    """Export pickups, history or absences as CSV"""
    data = _load_snapshot(snapshot)
    formatter = TabularExportFormatter(ctx.obj['settings'])

    try:
        if kind == 'pickups':
            content = formatter.export_pickups(data.history, data.students, data.schools, search)
        elif kind == 'history':
            content = formatter.export_history_summary(data.history, search)
        else:
            content = formatter.export_absences(data.absences, data.students, data.schools,
                                                data.all_users, start_date, end_date)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    if output is None:
        click.echo(content, nl=False)
        return

    target = Path(output)
    if target.is_dir():
        target = target / formatter.export_filename(kind, ctx.obj['NOW'], start_date, end_date)
    path = formatter.write(content, target)
    console.print(f"[green]Export written to {path}[/green]")


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.option('--by', type=click.Choice(list(BREAKDOWN_KEYS)), default='route_id', help='Breakdown key')
@click.pass_context
def report(ctx, snapshot, by):
    """Show today's performance report"""
    now = ctx.obj['NOW']
    data = _load_snapshot(snapshot)
    calculator = CompletionStatisticsCalculator(ctx.obj['settings'])

    today = now.date().isoformat()
    sessions = [s for s in data.sessions if s.date == today]
    session_ids = {s.id for s in sessions}
    todays_pickups = [p for p in data.pickups if p.session_id in session_ids]

    daily = calculator.daily_report(sessions, todays_pickups, total_routes=len(data.routes))

    table = Table(title=f"Daily Report {today}", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total Routes", str(daily.total_routes))
    table.add_row("Completed Today", str(daily.completed_today))
    table.add_row("Students", f"{daily.students_picked_up}/{daily.total_students}")
    table.add_row("Average Completion Time", f"{daily.average_completion_time} min")
    table.add_row("On-Time", f"{daily.on_time_percentage}%")
    table.add_row("Pickup Success Rate", f"{daily.pickup_success_rate}%")
    console.print(table)

    frame = calculator.breakdown(data.history, by=by)
    if frame.empty:
        return

    routes = index_by_id(data.routes)
    drivers = index_by_id(data.all_users)
    breakdown = Table(title=f"History by {by}", show_header=True, header_style="bold magenta")
    breakdown.add_column(by, style="cyan")
    for column in frame.columns:
        breakdown.add_column(column, justify="right")

    for key, row in frame.iterrows():
        if by == 'route_id':
            label = resolve_route_name(key, routes.get(key))
        elif by == 'driver_id':
            label = resolve_driver_name(drivers.get(key)) or str(key)
        else:
            label = str(key)
        breakdown.add_row(label, *(str(int(v)) for v in row.values))
    console.print(breakdown)


@cli.command()
@click.argument('snapshot', type=SNAPSHOT_PATH)
@click.pass_context
def alerts(ctx, snapshot):
    """Check in-progress sessions for late or missed schools"""
    data = _load_snapshot(snapshot)
    raised = MissedSchoolMonitor(ctx.obj['settings']).evaluate_snapshot(data, ctx.obj['NOW'])

    if not raised:
        console.print("[green]No missed school alerts[/green]")
        return

    for alert in raised:
        style = "red" if alert.urgent else "yellow"
        console.print(Panel(alert.message, title=alert.title, border_style=style))


@cli.command()
@click.pass_context
def config(ctx):
    """View current configuration"""
    settings = ctx.obj['settings']

    # Convert config to dict and hide sensitive values
    config_dict = settings.model_dump(mode='json')
    for key in config_dict:
        if any(sensitive in key.lower() for sensitive in ['password', 'secret', 'key', 'token']):
            if config_dict[key]:
                config_dict[key] = "***HIDDEN***"

    # Display as formatted YAML
    yaml_str = yaml.dump(config_dict, default_flow_style=False, sort_keys=True)
    syntax = Syntax(yaml_str, "yaml", theme="monokai", line_numbers=True)

    console.print("\n[bold cyan]Current Configuration[/bold cyan]")
    console.print(f"[dim]Environment: {settings.environment.value}[/dim]\n")
    console.print(syntax)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
