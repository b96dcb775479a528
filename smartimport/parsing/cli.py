"""Parser CLI sub-commands: try a field parser on one value."""

import json

import typer

from smartimport.errors import ParseError

app = typer.Typer(no_args_is_help=True)


def _fail(exc: ParseError):
    typer.echo(f"ERROR: {exc}")
    raise typer.Exit(1)


@app.command("time")
def time_cmd(text: str = typer.Argument(..., help="e.g. '2:15pm'")):
    """Normalize a clock time to minutes after midnight."""
    from smartimport.parsing.times import format_time, parse_time

    try:
        minutes = parse_time(text)
    except ParseError as exc:
        _fail(exc)
    typer.echo(f"{minutes}  ({format_time(minutes)})")


@app.command("name")
def name_cmd(text: str = typer.Argument(..., help="e.g. 'Dr. Mary Anne Smith-Jones'")):
    """Split a person name into title / first / middle / last."""
    from smartimport.parsing.names import parse_name

    try:
        name = parse_name(text)
    except ParseError as exc:
        _fail(exc)
    typer.echo(f"  Title:  {name.title}")
    typer.echo(f"  First:  {name.first}")
    typer.echo(f"  Middle: {name.middle}")
    typer.echo(f"  Last:   {name.last}")


@app.command("role")
def role_cmd(job_title: str = typer.Argument(..., help="Free-text job title")):
    """Classify a job title into role tags."""
    from smartimport.parsing.roles import classify_roles

    roles = classify_roles(job_title)
    typer.echo(", ".join(roles) if roles else "(unclassified)")


@app.command("instructor")
def instructor_cmd(text: str = typer.Argument(..., help="e.g. 'Dragoo, Sheri (892564540) [Primary, 100%]'")):
    """Parse an instructor field (';' separates co-instructors)."""
    from smartimport.parsing.instructors import parse_instructor_list

    try:
        refs = parse_instructor_list(text)
    except ParseError as exc:
        _fail(exc)
    typer.echo(json.dumps([r.to_dict() for r in refs], indent=2))


@app.command("meeting")
def meeting_cmd(text: str = typer.Argument(..., help="e.g. 'MWF 9:05am-9:55am'")):
    """Expand a meeting pattern into one session per day."""
    from smartimport.parsing.meetings import format_meeting_patterns, parse_meeting_patterns
    from smartimport.parsing.times import format_time

    try:
        patterns = parse_meeting_patterns(text)
    except ParseError as exc:
        _fail(exc)
    for p in patterns:
        typer.echo(f"  {p.day}  {format_time(p.start_minute)} - {format_time(p.end_minute)}")
    typer.echo(format_meeting_patterns(patterns))


@app.command("room")
def room_cmd(text: str = typer.Argument(..., help="e.g. 'FCS 211; FCS 213'")):
    """Split a room field into rooms with canonical keys."""
    from smartimport.parsing.rooms import parse_room_field

    rooms = parse_room_field(text)
    if not rooms:
        typer.echo("(no physical room)")
    for room in rooms:
        typer.echo(f"  {room.room_key:<20} {room.name}")
