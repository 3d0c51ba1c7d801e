"""FastAPI JSON API for the kickoff tournament engine."""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, StrictBool, StrictInt

from kickoff.config_loader import default_config
from kickoff.errors import KickoffError, NotFoundError, StateConflictError, ValidationError
from kickoff.service import TournamentService

logger = logging.getLogger(__name__)

app = FastAPI(title="Kickoff Tournament Engine")

_service: Optional[TournamentService] = None


def configure(service: TournamentService):
    """Set the service used by every request."""
    global _service
    _service = service


def get_service() -> TournamentService:
    """Request dependency; builds a service from the default config on first use."""
    global _service
    if _service is None:
        _service = TournamentService.from_config(default_config())
    return _service


# ============================================================================
# Request models
# ============================================================================


class PlayerCreate(BaseModel):
    name: str


class TournamentCreate(BaseModel):
    name: str
    type: Optional[str] = None
    teams_per_group: Optional[StrictInt] = None
    teams_advancing_per_group: Optional[StrictInt] = None
    allow_third_place_teams: Optional[StrictBool] = None
    third_place_playoff: Optional[StrictBool] = None


class PlayerAdd(BaseModel):
    player_id: StrictInt


class BulkPlayerAdd(BaseModel):
    player_ids: Optional[list[StrictInt]] = None
    add_all_players: bool = False


class GenerateMatches(BaseModel):
    group_count: Optional[StrictInt] = None


class ScoreUpdate(BaseModel):
    score1: StrictInt
    score2: StrictInt


# ============================================================================
# Error handling
# ============================================================================

ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (StateConflictError, 409),
)


@app.exception_handler(KickoffError)
async def kickoff_error_handler(request: Request, exc: KickoffError):
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code == 500:
        logger.error("Unhandled engine error on %s: %s", request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request", "details": jsonable_encoder(exc.errors())}, status_code=400)


# ============================================================================
# Players
# ============================================================================


@app.get("/players")
def list_players(service: TournamentService = Depends(get_service)):
    return service.list_players()


@app.post("/players", status_code=201)
def create_player(body: PlayerCreate, service: TournamentService = Depends(get_service)):
    return service.create_player(body.name)


@app.delete("/players/{player_id}", status_code=204)
def delete_player(player_id: int, service: TournamentService = Depends(get_service)):
    service.delete_player(player_id)
    return Response(status_code=204)


# ============================================================================
# Tournaments
# ============================================================================


@app.get("/tournaments")
def list_tournaments(service: TournamentService = Depends(get_service)):
    return service.list_tournaments()


@app.post("/tournaments", status_code=201)
def create_tournament(body: TournamentCreate, service: TournamentService = Depends(get_service)):
    settings = body.model_dump(exclude={"name"}, exclude_none=True)
    return service.create_tournament(body.name, **settings)


@app.get("/tournaments/{tournament_id}")
def get_tournament(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.get_tournament_details(tournament_id)


@app.delete("/tournaments/{tournament_id}", status_code=204)
def delete_tournament(tournament_id: int, service: TournamentService = Depends(get_service)):
    service.delete_tournament(tournament_id)
    return Response(status_code=204)


@app.get("/tournaments/{tournament_id}/players")
def list_tournament_players(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.list_tournament_players(tournament_id)


@app.post("/tournaments/{tournament_id}/players", status_code=201)
def add_player(
    tournament_id: int, body: PlayerAdd, service: TournamentService = Depends(get_service)
):
    return service.add_player(tournament_id, body.player_id)


@app.post("/tournaments/{tournament_id}/players/bulk")
def bulk_add_players(
    tournament_id: int, body: BulkPlayerAdd, service: TournamentService = Depends(get_service)
):
    result = service.bulk_add_players(
        tournament_id, player_ids=body.player_ids, add_all=body.add_all_players
    )
    return {
        "tournament_id": result.tournament_id,
        "results": {
            "successful": [{"player_id": p.id, "player_name": p.name} for p in result.successful],
            "failed": result.failed,
            "skipped": result.skipped,
        },
        "summary": result.summary,
    }


@app.delete("/tournaments/{tournament_id}/players/{player_id}", status_code=204)
def remove_player(
    tournament_id: int, player_id: int, service: TournamentService = Depends(get_service)
):
    service.remove_player(tournament_id, player_id)
    return Response(status_code=204)


# ============================================================================
# Matches
# ============================================================================


@app.post("/tournaments/{tournament_id}/generate-matches")
def generate_matches(
    tournament_id: int,
    body: Optional[GenerateMatches] = None,
    service: TournamentService = Depends(get_service),
):
    group_count = body.group_count if body else None
    return service.generate_matches(tournament_id, group_count=group_count)


@app.get("/tournaments/{tournament_id}/matches")
def list_matches(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.list_matches(tournament_id)


@app.get("/matches/{match_id}")
def get_match(match_id: int, service: TournamentService = Depends(get_service)):
    return service.get_match(match_id)


@app.put("/matches/{match_id}")
def update_score(match_id: int, body: ScoreUpdate, service: TournamentService = Depends(get_service)):
    return service.record_score(match_id, body.score1, body.score2)


# ============================================================================
# Results
# ============================================================================


@app.get("/tournaments/{tournament_id}/standings")
def get_standings(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.compute_standings(tournament_id)


@app.get("/tournaments/{tournament_id}/groups")
def get_groups(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.compute_group_standings(tournament_id)


@app.get("/tournaments/{tournament_id}/bracket")
def get_bracket(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.get_bracket(tournament_id)


@app.post("/tournaments/{tournament_id}/bracket")
def generate_bracket(tournament_id: int, service: TournamentService = Depends(get_service)):
    return service.generate_knockout(tournament_id)


@app.get("/tournaments/{tournament_id}/winner")
def get_winner(tournament_id: int, service: TournamentService = Depends(get_service)):
    return {"winner": service.get_winner(tournament_id)}


@app.get("/tournaments/{tournament_id}/runner-up")
def get_runner_up(tournament_id: int, service: TournamentService = Depends(get_service)):
    return {"runner_up": service.get_runner_up(tournament_id)}


@app.get("/tournaments/{tournament_id}/third-place")
def get_third_place(tournament_id: int, service: TournamentService = Depends(get_service)):
    return {"third_place": service.get_third_place(tournament_id)}
