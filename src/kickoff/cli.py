"""Command-line interface for kickoff."""

import logging
from typing import Optional

import click

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO"):
    """Send kickoff log records to stderr at the given level."""
    logger = logging.getLogger("kickoff")
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)


def _load_config(path: Optional[str]) -> dict:
    from kickoff.config_loader import default_config, load_and_validate_config

    if path:
        return load_and_validate_config(path)
    return default_config()


def _service(ctx: click.Context):
    from kickoff.service import TournamentService

    return TournamentService.from_config(ctx.obj["config"])


def _fail(message: str):
    click.echo(f"[ERROR] {message}", err=True)
    raise click.Abort()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_path", required=False, help="Path to config YAML file")
@click.option("--log-level", required=False, help="Override log level (DEBUG, INFO, ...)")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]):
    """Kickoff - group and knockout football tournament manager."""
    from kickoff.config_loader import ConfigError

    try:
        config = _load_config(config_path)
    except ConfigError as e:
        _fail(f"Config error: {e}")

    setup_logging(log_level or config["log_level"])
    ctx.obj = {"config": config}


@cli.command()
@click.pass_context
def init_db(ctx: click.Context):
    """Create the database tables.

    Example:
        kickoff init-db
    """
    from kickoff.storage import DatabaseManager

    db = DatabaseManager(ctx.obj["config"]["database"])
    db.create_tables()
    click.echo(f"[SUCCESS] Database ready: {db.db_path}")


@cli.command()
@click.argument("name")
@click.pass_context
def add_player(ctx: click.Context, name: str):
    """Create a player.

    Example:
        kickoff add-player "Ana Lopez"
    """
    from kickoff.errors import KickoffError

    try:
        player = _service(ctx).create_player(name)
    except KickoffError as e:
        _fail(str(e))
    click.echo(f"[SUCCESS] Created player {player.id}: {player.name}")


@cli.command()
@click.argument("name")
@click.option(
    "--type",
    "tournament_type",
    type=click.Choice(["round_robin", "group_and_knockout"]),
    default=None,
    help="Tournament format (default from config, else round_robin)",
)
@click.option("--teams-per-group", type=int, default=None)
@click.option("--teams-advancing", "teams_advancing_per_group", type=int, default=None)
@click.option("--allow-third-place/--no-allow-third-place", "allow_third_place_teams", default=None)
@click.option("--third-place-playoff/--no-third-place-playoff", default=None)
@click.pass_context
def create_tournament(
    ctx: click.Context,
    name: str,
    tournament_type: Optional[str],
    teams_per_group: Optional[int],
    teams_advancing_per_group: Optional[int],
    allow_third_place_teams: Optional[bool],
    third_place_playoff: Optional[bool],
):
    """Create a tournament.

    Example:
        kickoff create-tournament "Summer Cup" --type group_and_knockout --allow-third-place
    """
    from kickoff.errors import KickoffError

    try:
        tournament = _service(ctx).create_tournament(
            name,
            type=tournament_type,
            teams_per_group=teams_per_group,
            teams_advancing_per_group=teams_advancing_per_group,
            allow_third_place_teams=allow_third_place_teams,
            third_place_playoff=third_place_playoff,
        )
    except KickoffError as e:
        _fail(str(e))
    click.echo(f"[SUCCESS] Created tournament {tournament.id}: {tournament}")


@cli.command()
@click.argument("tournament_id", type=int)
@click.argument("player_ids", type=int, nargs=-1)
@click.option("--all", "add_all", is_flag=True, help="Register every existing player")
@click.pass_context
def register(ctx: click.Context, tournament_id: int, player_ids: tuple, add_all: bool):
    """Register players in a tournament.

    Example:
        kickoff register 1 3 4 5 6
        kickoff register 1 --all
    """
    from kickoff.errors import KickoffError

    try:
        result = _service(ctx).bulk_add_players(
            tournament_id, player_ids=list(player_ids) or None, add_all=add_all
        )
    except KickoffError as e:
        _fail(str(e))

    for player in result.successful:
        click.echo(f"  + {player.name}")
    for entry in result.skipped:
        click.echo(f"  = {entry['player_name']} ({entry['reason']})")
    for entry in result.failed:
        click.echo(f"  ! {entry['player_name']} ({entry['error']})")

    summary = result.summary
    click.echo(
        f"[INFO] {summary['successful']} added, {summary['skipped']} skipped, "
        f"{summary['failed']} failed"
    )


@cli.command()
@click.argument("tournament_id", type=int)
@click.option("--groups", "group_count", type=int, default=None, help="Group count (round_robin only)")
@click.pass_context
def generate(ctx: click.Context, tournament_id: int, group_count: Optional[int]):
    """Draw groups and generate group stage matches.

    Example:
        kickoff generate 1
    """
    from kickoff.errors import KickoffError

    try:
        matches = _service(ctx).generate_matches(tournament_id, group_count=group_count)
    except KickoffError as e:
        _fail(str(e))

    for match in matches:
        click.echo(f"  {match}")
    click.echo(f"[SUCCESS] Generated {len(matches)} matches")


@cli.command()
@click.argument("match_id", type=int)
@click.argument("score1", type=int)
@click.argument("score2", type=int)
@click.pass_context
def record_score(ctx: click.Context, match_id: int, score1: int, score2: int):
    """Record the result of a match.

    Example:
        kickoff record-score 12 2 1
    """
    from kickoff.errors import KickoffError

    try:
        match = _service(ctx).record_score(match_id, score1, score2)
    except KickoffError as e:
        _fail(str(e))
    click.echo(f"[SUCCESS] {match}")


@cli.command()
@click.argument("tournament_id", type=int)
@click.option("--by-group", is_flag=True, help="One table per group")
@click.pass_context
def standings(ctx: click.Context, tournament_id: int, by_group: bool):
    """Show group stage standings.

    Example:
        kickoff standings 1 --by-group
    """
    from kickoff.errors import KickoffError

    try:
        service = _service(ctx)
        if by_group:
            tables = [(g.group_name, g.players) for g in service.compute_group_standings(tournament_id)]
        else:
            tables = [("Overall", service.compute_standings(tournament_id))]
    except KickoffError as e:
        _fail(str(e))

    for title, rows in tables:
        click.echo(f"\n[STATS] {title}")
        for position, row in enumerate(rows, start=1):
            click.echo(
                f"  {position}. {row.name:<20} {row.played}P {row.wins}W {row.draws}D {row.losses}L "
                f"{row.goals_for}:{row.goals_against} ({row.goal_diff:+d}) {row.points}pts"
            )


@cli.command()
@click.argument("tournament_id", type=int)
@click.pass_context
def bracket(ctx: click.Context, tournament_id: int):
    """Show the knockout bracket.

    Example:
        kickoff bracket 1
    """
    from kickoff.errors import KickoffError

    try:
        rounds = _service(ctx).get_bracket(tournament_id)
    except KickoffError as e:
        _fail(str(e))

    if not rounds:
        click.echo("[INFO] No knockout matches yet")
        return

    for round_name, matches in rounds.items():
        click.echo(f"\n[ROUND] {round_name}")
        for match in matches:
            click.echo(f"  {match}")


@cli.command()
@click.argument("tournament_id", type=int)
@click.pass_context
def podium(ctx: click.Context, tournament_id: int):
    """Show winner, runner-up and third place.

    Example:
        kickoff podium 1
    """
    from kickoff.errors import KickoffError

    try:
        service = _service(ctx)
        places = [
            ("Winner", service.get_winner(tournament_id)),
            ("Runner-up", service.get_runner_up(tournament_id)),
            ("Third place", service.get_third_place(tournament_id)),
        ]
    except KickoffError as e:
        _fail(str(e))

    for label, player in places:
        click.echo(f"  {label}: {player.name if player else '-'}")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Run the JSON API.

    Example:
        kickoff serve --host 0.0.0.0 --port 8080
    """
    import uvicorn
    from kickoff.webapp.app import app, configure

    configure(_service(ctx))

    click.echo(f"[INFO] Starting API at http://{host}:{port}")
    click.echo("[INFO] Press CTRL+C to stop")

    try:
        uvicorn.run(app, host=host, port=port, log_level=ctx.obj["config"]["log_level"].lower())
    except KeyboardInterrupt:
        click.echo("\n[INFO] Shutting down...")


if __name__ == "__main__":
    cli()
