import asyncio
import json
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from access import require_admin, resolve_league_context, resolve_player_context, resolve_user
from errors import NotFound, ScoretrackerError, ValidationFailed
from leaderboard import aggregate
from live_state import sanitize
from logger import get_logger
from schemas import (
    CreateLeagueRequest,
    LiveStateRequest,
    PlayerNameRequest,
    ScoringConfig,
    SessionPayload,
)
from settings import Settings, load_settings
from store import LeagueStore

log = get_logger("api")

router = APIRouter()

STREAM_KEEPALIVE_SECONDS = 15.0


def get_store(request: Request) -> LeagueStore:
    return request.app.state.store


# ---------------------------------------------------------------------------
# Health & Schema
# ---------------------------------------------------------------------------
@router.get("/")
def read_root():
    return {"message": "Floorball Scoretracker API is running"}


@router.get("/schema")
def get_schema_overview():
    return {
        "models": ["League", "Player", "LiveGameState", "ScoringConfig", "SavedSession"],
        "version": 1,
    }


# ---------------------------------------------------------------------------
# League APIs
# ---------------------------------------------------------------------------
@router.get("/api/leagues")
def list_leagues(
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    user_id = resolve_user(store, authorization)
    return {"leagues": store.list_leagues(user_id)}


@router.post("/api/leagues")
def create_league(
    payload: CreateLeagueRequest,
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    user_id = resolve_user(store, authorization)
    name = (payload.name or "").strip()
    if not name:
        raise ValidationFailed("League name is required")
    return {"league": store.create_league(user_id, name)}


@router.get("/api/public/league")
def get_public_league(
    token: Optional[str] = Query(None),
    store: LeagueStore = Depends(get_store),
):
    if not token:
        raise ValidationFailed("Token is required")
    return {"league": store.resolve_public_token(token)}


# ---------------------------------------------------------------------------
# Scoring configuration (admin only)
# ---------------------------------------------------------------------------
def _points(payload: Dict[str, Any], key: str, default: float):
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValidationFailed("Points must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("Points must be numeric")
    if not math.isfinite(number):
        raise ValidationFailed("Points must be numeric")
    if number < 0:
        raise ValidationFailed("Points must be non-negative")
    return int(number) if number.is_integer() else number


@router.get("/api/leagues/{league_id}/scoring", response_model=ScoringConfig)
def get_scoring(
    league_id: str,
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    require_admin(store, authorization, league_id)
    return store.get_scoring_config(league_id)


@router.put("/api/leagues/{league_id}/scoring", response_model=ScoringConfig)
def put_scoring(
    league_id: str,
    payload: Dict[str, Any] = Body(...),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    require_admin(store, authorization, league_id)
    config = ScoringConfig(
        attendance_points=_points(payload, "attendancePoints", 1),
        goal_points=_points(payload, "goalPoints", 1),
        win_bonus=_points(payload, "winBonus", 5),
        enable_assists=bool(payload.get("enableAssists")),
        assist_points=_points(payload, "assistPoints", 1),
    )
    log.info(f"Scoring updated for league {league_id}: {config.model_dump()}")
    return store.put_scoring_config(league_id, config)


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------
@router.get("/api/players")
def get_players(
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    return {"players": store.get_players(context.league_id)}


@router.post("/api/players", status_code=201)
def add_player(
    payload: PlayerNameRequest,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    name = (payload.name or "").strip()
    if not name:
        raise ValidationFailed("Name is required")
    return {"player": store.add_player(context.league_id, name)}


@router.put("/api/players/{player_id}")
def rename_player(
    player_id: str,
    payload: PlayerNameRequest,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    name = (payload.name or "").strip()
    if not name:
        raise ValidationFailed("Name is required")
    resolve_player_context(store, authorization, player_id, league_id, public_token)
    store.rename_player(player_id, name)
    return {"ok": True}


@router.delete("/api/players/{player_id}")
def delete_player(
    player_id: str,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    resolve_player_context(store, authorization, player_id, league_id, public_token)
    store.delete_player(player_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Live game
# ---------------------------------------------------------------------------
@router.get("/api/live-game")
async def get_live_game(
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    return {"state": sanitize(store.get_live_state(context.league_id))}


@router.put("/api/live-game")
async def put_live_game(
    payload: LiveStateRequest,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    state = sanitize(payload.state)
    store.put_live_state(context.league_id, state)
    return {"state": state}


@router.get("/api/live-game/stream")
async def stream_live_game(
    request: Request,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    """Server-Sent Events feed of live state row changes for one league."""
    context = resolve_league_context(store, authorization, league_id, public_token)
    queue = store.subscribe(context.league_id)

    async def events():
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {event['eventType']}\ndata: {json.dumps(event)}\n\n"
        finally:
            store.unsubscribe(context.league_id, queue)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


# ---------------------------------------------------------------------------
# Sessions & Leaderboard
# ---------------------------------------------------------------------------
@router.get("/api/sessions")
def list_sessions(
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    return {"sessions": store.list_sessions(context.league_id)}


@router.post("/api/sessions")
def create_session(
    payload: SessionPayload,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)

    if not payload.players:
        raise ValidationFailed("At least one player is required")

    for player in payload.players:
        try:
            owner_id, _ = store.get_player(player.player_id)
        except NotFound:
            # Deleted mid-game; the payload name is kept instead.
            continue
        if owner_id != context.league_id:
            raise ValidationFailed("Players must belong to this league")

    session = store.create_session(context.league_id, payload)
    log.info(
        f"Session {session.id} saved for league {context.league_id} "
        f"({session.team_a_score}-{session.team_b_score}, winner {session.winner})"
    )
    return {"session": session}


@router.delete("/api/sessions/{session_id}")
def delete_session(
    session_id: str,
    league_id: Optional[str] = Query(None, alias="leagueId"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    if not league_id:
        raise ValidationFailed("leagueId is required")
    require_admin(store, authorization, league_id)
    store.delete_session(league_id, session_id)
    log.info(f"Session {session_id} deleted from league {league_id}")
    return {"ok": True}


@router.get("/api/leaderboard")
def get_leaderboard(
    sort: str = Query("name"),
    descending: bool = Query(False),
    league_id: Optional[str] = Query(None, alias="leagueId"),
    public_token: Optional[str] = Query(None, alias="publicToken"),
    authorization: Optional[str] = Header(None),
    store: LeagueStore = Depends(get_store),
):
    context = resolve_league_context(store, authorization, league_id, public_token)
    sessions = store.list_sessions(context.league_id)
    return {"leaderboard": aggregate(sessions, sort_by=sort, descending=descending)}


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
async def _handle_app_error(request: Request, exc: ScoretrackerError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"Invalid {location or 'request'}: {errors[0].get('msg')}"
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"detail": message})


def create_app(store: Optional[LeagueStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    store = store or LeagueStore()

    for token, user_id in settings.dev_tokens.items():
        store.issue_token(user_id, token=token)

    app = FastAPI(title="Floorball Scoretracker API")
    app.state.store = store
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ScoretrackerError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
