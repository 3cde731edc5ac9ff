"""
FastAPI web server for jamsync.

Provides the REST API used by the registration page, the admin console and
the stage kiosk. Every handler runs its work on the process EventLoop.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Callable, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from ..config_manager import ConfigManager
from ..game import GAMES
from ..loop import EventLoop
from ..matching import generate_next_band
from ..models import InstrumentType, UserStatus
from ..queue import BandQueueManager, QueueLimitError
from ..session import LiveSession
from ..state import StateStore
from ..stats import compute_stats
from ..sync import SyncEngine
from ..user import UserManager

logger = logging.getLogger(__name__)


# Request models
class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    username: str
    instruments: List[str]
    custom_instrument: Optional[str] = None
    avatar_seed: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    x: Optional[str] = None


class UserStatusRequest(BaseModel):
    status: Optional[str] = None  # Toggles when omitted


class GenerateBandRequest(BaseModel):
    desired_size: Optional[int] = None
    force: bool = False


class MemberAssignment(BaseModel):
    user_id: str
    role: str  # Instrument value, or the user's custom label


class UpdateBandRequest(BaseModel):
    """Request model for editing a queued band."""

    name: Optional[str] = None
    duration_minutes: Optional[float] = None
    members: Optional[List[MemberAssignment]] = None


class ReorderRequest(BaseModel):
    new_position: int


class AdjustTimeRequest(BaseModel):
    delta_seconds: int


class SetTimeRequest(BaseModel):
    value: str  # "5", "6.5" or "5:30"


class AddMemberRequest(BaseModel):
    user_id: str
    role: str


class RenameRequest(BaseModel):
    name: str


class SelectGameRequest(BaseModel):
    game_id: str


class GameDurationRequest(BaseModel):
    seconds: int


class AddGameTimeRequest(BaseModel):
    seconds: Optional[int] = None


class OperatorAuthRequest(BaseModel):
    pin: str


class ConfigUpdateRequest(BaseModel):
    key: str
    value: str


# Dependency to get components
def get_loop(request: Request) -> EventLoop:
    """Get EventLoop from app state."""
    return request.app.state.loop


def get_state_store(request: Request) -> StateStore:
    """Get StateStore from app state."""
    return request.app.state.state_store


def get_queue_manager(request: Request) -> BandQueueManager:
    """Get BandQueueManager from app state."""
    return request.app.state.queue_manager


def get_user_manager(request: Request) -> UserManager:
    """Get UserManager from app state."""
    return request.app.state.user_manager


def get_session(request: Request) -> LiveSession:
    """Get LiveSession from app state."""
    return request.app.state.session


def get_config_manager(request: Request) -> ConfigManager:
    """Get ConfigManager from app state."""
    return request.app.state.config_manager


def check_operator(request: Request) -> bool:
    """
    Check if user is authenticated as operator.
    """
    return request.session.get("operator", False)


def require_operator(is_operator: bool):
    if not is_operator:
        raise HTTPException(status_code=403, detail="Operator authentication required")


async def run_in_loop(loop: EventLoop, callback: Callable, *args) -> Any:
    """
    Run callback on the EventLoop and await its result.

    ValueError becomes a 400 and KeyError a 404; anything else propagates.
    """
    try:
        return await asyncio.wrap_future(loop.submit(callback, *args))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Not found: {e.args[0] if e.args else ''}")


def _parse_instrument(value: str) -> InstrumentType:
    try:
        return InstrumentType(value)
    except ValueError:
        raise ValueError(f"Unknown instrument: {value}")


def create_app(
    loop: EventLoop,
    state_store: StateStore,
    queue_manager: BandQueueManager,
    user_manager: UserManager,
    session: LiveSession,
    config_manager: ConfigManager,
    sync_engine: Optional[SyncEngine] = None,
    secret_key: str = "jamsync-secret-key-change-in-production",
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        loop: EventLoop all state changes are serialized on
        state_store: StateStore instance
        queue_manager: BandQueueManager instance
        user_manager: UserManager instance
        session: LiveSession for the stage kiosk
        config_manager: ConfigManager instance
        sync_engine: SyncEngine instance (optional, reported in /api/state)
        secret_key: Signing key for the operator session cookie

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="jamsync", version="1.0.0")

    # Add session middleware for operator authentication
    app.add_middleware(SessionMiddleware, secret_key=secret_key)

    # Store components in app state
    app.state.loop = loop
    app.state.state_store = state_store
    app.state.queue_manager = queue_manager
    app.state.user_manager = user_manager
    app.state.session = session
    app.state.config_manager = config_manager
    app.state.sync_engine = sync_engine

    # State endpoints
    @app.get("/api/state")
    async def get_state(
        request: Request,
        loop: EventLoop = Depends(get_loop),
        store: StateStore = Depends(get_state_store),
    ):
        """Whole shared state in wire form, plus sync status."""
        snapshot = await run_in_loop(loop, store.snapshot)
        sync = request.app.state.sync_engine
        snapshot["degraded"] = bool(sync and sync.degraded)
        return snapshot

    @app.get("/api/stats")
    async def get_stats(
        loop: EventLoop = Depends(get_loop),
        store: StateStore = Depends(get_state_store),
    ):
        """Top players and instrument counts over played and queued bands."""

        def stats():
            state = store.state
            return compute_stats(state.users, state.bands, state.history)

        return await run_in_loop(loop, stats)

    @app.get("/api/games")
    async def list_games():
        return {"games": [asdict(game) for game in GAMES]}

    # User endpoints
    @app.post("/api/users")
    async def register_user(
        request_data: RegisterRequest,
        loop: EventLoop = Depends(get_loop),
        user_mgr: UserManager = Depends(get_user_manager),
    ):
        """Register a new musician (public)."""

        def register():
            instruments = [_parse_instrument(value) for value in request_data.instruments]
            return user_mgr.register(
                first_name=request_data.first_name,
                last_name=request_data.last_name,
                username=request_data.username,
                instruments=instruments,
                custom_instrument=request_data.custom_instrument,
                avatar_seed=request_data.avatar_seed,
                email=request_data.email,
                phone_number=request_data.phone_number,
                instagram=request_data.instagram,
                facebook=request_data.facebook,
                x=request_data.x,
            )

        user = await run_in_loop(loop, register)
        return {"status": "registered", "user": user.to_dict()}

    @app.get("/api/users")
    async def list_users(
        loop: EventLoop = Depends(get_loop),
        user_mgr: UserManager = Depends(get_user_manager),
    ):
        users = await run_in_loop(loop, user_mgr.get_users)
        return {"users": [user.to_dict() for user in users]}

    @app.post("/api/users/{user_id}/status")
    async def set_user_status(
        user_id: str,
        request_data: UserStatusRequest,
        loop: EventLoop = Depends(get_loop),
        user_mgr: UserManager = Depends(get_user_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Pause or resume a musician (operator only)."""
        require_operator(is_operator)

        def update():
            if user_mgr.get_user(user_id) is None:
                raise KeyError(user_id)
            if request_data.status is None:
                return user_mgr.toggle_status(user_id)
            status = UserStatus(request_data.status.upper())
            user_mgr.set_status(user_id, status)
            return status

        status = await run_in_loop(loop, update)
        return {"status": "updated", "user_status": status.value}

    @app.delete("/api/users/{user_id}")
    async def delete_user(
        user_id: str,
        confirm: bool = False,
        loop: EventLoop = Depends(get_loop),
        user_mgr: UserManager = Depends(get_user_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Remove a musician from the roster (operator only, needs confirm=true)."""
        require_operator(is_operator)
        if not confirm:
            raise HTTPException(status_code=409, detail="Confirmation required to delete a user")
        if not await run_in_loop(loop, user_mgr.delete_user, user_id):
            raise HTTPException(status_code=404, detail="User not found")
        return {"status": "deleted"}

    # Band queue endpoints
    @app.get("/api/bands")
    async def get_bands(
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
    ):
        bands = await run_in_loop(loop, queue_mgr.get_queue)
        return {"bands": [band.to_dict() for band in bands]}

    @app.post("/api/bands/generate")
    async def generate_band(
        request_data: GenerateBandRequest,
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Form and queue the next band automatically (operator only)."""
        require_operator(is_operator)
        try:
            band = await run_in_loop(
                loop,
                queue_mgr.add_generated_band,
                generate_next_band,
                request_data.desired_size,
                request_data.force,
            )
        except QueueLimitError as e:
            status_code = 409 if e.needs_confirmation else 400
            raise HTTPException(status_code=status_code, detail=str(e))
        if band is None:
            raise HTTPException(
                status_code=400,
                detail="Could not form a band with the active musicians (check drummers and bassists)",
            )
        return {"status": "added", "band": band.to_dict()}

    @app.post("/api/bands/manual")
    async def create_manual_band(
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Queue an empty band to fill by hand (operator only)."""
        require_operator(is_operator)
        band = await run_in_loop(loop, queue_mgr.create_manual_band)
        return {"status": "added", "band": band.to_dict()}

    @app.patch("/api/bands/{band_id}")
    async def update_band(
        band_id: str,
        request_data: UpdateBandRequest,
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        user_mgr: UserManager = Depends(get_user_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """
        Edit a queued band (operator only).

        Currently supported fields:
        - name: New band name
        - duration_minutes: Slot length, fractions allowed
        - members: Complete lineup as (user_id, role) pairs
        """
        require_operator(is_operator)

        def update():
            if queue_mgr.get_band(band_id) is None:
                raise KeyError(band_id)
            assignments = None
            if request_data.members is not None:
                assignments = []
                for assignment in request_data.members:
                    user = user_mgr.get_user(assignment.user_id)
                    if user is None:
                        raise KeyError(assignment.user_id)
                    assignments.append((user, assignment.role))
            queue_mgr.update_band(
                band_id,
                name=request_data.name,
                duration_minutes=request_data.duration_minutes,
                assignments=assignments,
            )
            return queue_mgr.get_band(band_id)

        band = await run_in_loop(loop, update)
        return {"status": "updated", "band": band.to_dict()}

    @app.post("/api/bands/{band_id}/shuffle-name")
    async def shuffle_band_name(
        band_id: str,
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Give a band a fresh unused name (operator only)."""
        require_operator(is_operator)
        name = await run_in_loop(loop, queue_mgr.shuffle_name, band_id)
        if name is None:
            raise HTTPException(status_code=404, detail="Band not found")
        return {"status": "renamed", "name": name}

    @app.patch("/api/bands/{band_id}/position")
    async def reorder_band(
        band_id: str,
        request_data: ReorderRequest,
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Move a band within the queue (operator only)."""
        require_operator(is_operator)

        def reorder():
            ids = [band.id for band in queue_mgr.get_queue()]
            if band_id not in ids:
                raise KeyError(band_id)
            from_index = ids.index(band_id)
            if from_index == request_data.new_position:
                return True
            return queue_mgr.reorder(from_index, request_data.new_position)

        if not await run_in_loop(loop, reorder):
            raise HTTPException(status_code=400, detail="Invalid position")
        return {"status": "reordered"}

    @app.delete("/api/bands/{band_id}")
    async def delete_band(
        band_id: str,
        confirm: bool = False,
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Remove a band from the queue (operator only, needs confirm=true)."""
        require_operator(is_operator)
        if not confirm:
            raise HTTPException(status_code=409, detail="Confirmation required to delete a band")

        def remove():
            ids = [band.id for band in queue_mgr.get_queue()]
            if band_id not in ids:
                raise KeyError(band_id)
            return queue_mgr.remove_at(ids.index(band_id))

        await run_in_loop(loop, remove)
        return {"status": "deleted"}

    # History endpoints
    @app.get("/api/history")
    async def get_history(
        loop: EventLoop = Depends(get_loop),
        queue_mgr: BandQueueManager = Depends(get_queue_manager),
    ):
        """Bands that already played, oldest first."""
        history = await run_in_loop(loop, queue_mgr.get_history)
        return {"history": [band.to_dict() for band in history]}

    # Live stage endpoints
    async def live_action(loop: EventLoop, session: LiveSession, callback: Callable, *args):
        """Run a stage action and return its result with a fresh snapshot."""

        def action():
            return callback(*args), session.snapshot()

        result, snapshot = await run_in_loop(loop, action)
        return {"result": result, "live": snapshot}

    @app.get("/api/live")
    async def get_live(
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
    ):
        """Everything the stage screen renders."""
        return await run_in_loop(loop, session.snapshot)

    @app.get("/api/live/available-users")
    async def get_available_users(
        search: Optional[str] = None,
        instrument: Optional[str] = None,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
    ):
        """Active musicians who can join the band on stage."""

        def available():
            wanted = _parse_instrument(instrument) if instrument else None
            return session.available_users(search=search, instrument=wanted)

        users = await run_in_loop(loop, available)
        return {"users": [user.to_dict() for user in users]}

    @app.post("/api/live/timer/{action}")
    async def timer_action(
        action: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Start, pause, toggle, reset or dismiss the band countdown (operator only)."""
        require_operator(is_operator)
        actions = {
            "start": session.timer.start,
            "pause": session.timer.pause,
            "toggle": session.timer.toggle,
            "reset": session.timer.reset,
            "dismiss": session.timer.dismiss,
        }
        if action not in actions:
            raise HTTPException(status_code=404, detail=f"Unknown timer action: {action}")
        return await live_action(loop, session, actions[action])

    @app.post("/api/live/timer-adjust")
    async def adjust_timer(
        request_data: AdjustTimeRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Add or remove seconds from the countdown (operator only)."""
        require_operator(is_operator)
        return await live_action(loop, session, session.timer.adjust, request_data.delta_seconds)

    @app.post("/api/live/timer-set")
    async def set_timer(
        request_data: SetTimeRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Overwrite the countdown from "m:ss" or minutes (operator only)."""
        require_operator(is_operator)
        return await live_action(loop, session, session.timer.set_absolute, request_data.value)

    @app.post("/api/live/advance/{step}")
    async def advance(
        step: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Two-step "next band": request, then confirm or cancel (operator only)."""
        require_operator(is_operator)
        timer = session.timer

        def confirm():
            band = timer.confirm_advance()
            return band.to_dict() if band else None

        steps = {
            "request": timer.request_advance,
            "confirm": confirm,
            "cancel": timer.cancel_advance,
        }
        if step not in steps:
            raise HTTPException(status_code=404, detail=f"Unknown advance step: {step}")
        return await live_action(loop, session, steps[step])

    @app.post("/api/live/members")
    async def add_live_member(
        request_data: AddMemberRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Add a musician to the band on stage (operator only)."""
        require_operator(is_operator)
        response = await live_action(
            loop, session, session.add_member, request_data.user_id, request_data.role
        )
        if not response["result"]:
            raise HTTPException(status_code=400, detail="No band on stage or user already in it")
        return response

    @app.delete("/api/live/members/{user_id}")
    async def remove_live_member(
        user_id: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Remove a musician from the band on stage right away (operator only)."""
        require_operator(is_operator)
        response = await live_action(loop, session, session.remove_member, user_id)
        if not response["result"]:
            raise HTTPException(status_code=404, detail="Member not found in the band on stage")
        return response

    @app.patch("/api/live/band")
    async def rename_live_band(
        request_data: RenameRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Rename the band on stage (operator only)."""
        require_operator(is_operator)
        return await live_action(loop, session, session.rename_head, request_data.name)

    @app.post("/api/live/modals/{name}")
    async def open_modal(
        name: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        require_operator(is_operator)
        response = await live_action(loop, session, session.open_modal, name)
        if not response["result"]:
            raise HTTPException(status_code=404, detail=f"Unknown dialog: {name}")
        return response

    @app.delete("/api/live/modals/{name}")
    async def close_modal(
        name: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        require_operator(is_operator)
        return await live_action(loop, session, session.close_modal, name)

    # Game endpoints
    @app.post("/api/live/game/select")
    async def select_game(
        request_data: SelectGameRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Open a game's rules screen (operator only)."""
        require_operator(is_operator)
        response = await live_action(loop, session, session.select_game, request_data.game_id)
        if not response["result"]:
            raise HTTPException(status_code=400, detail="Unknown game or a game is already open")
        return response

    @app.post("/api/live/game/duration")
    async def choose_game_duration(
        request_data: GameDurationRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        require_operator(is_operator)
        response = await live_action(
            loop, session, session.game.choose_duration, request_data.seconds
        )
        if not response["result"]:
            raise HTTPException(status_code=400, detail="Duration not available")
        return response

    @app.post("/api/live/game/add-time")
    async def add_game_time(
        request_data: AddGameTimeRequest,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Extend the game countdown (operator only)."""
        require_operator(is_operator)
        return await live_action(loop, session, session.game.add_time, request_data.seconds)

    @app.post("/api/live/game/{action}")
    async def game_action(
        action: str,
        loop: EventLoop = Depends(get_loop),
        session: LiveSession = Depends(get_session),
        is_operator: bool = Depends(check_operator),
    ):
        """Start, pause/resume, toggle fullscreen or close the game (operator only)."""
        require_operator(is_operator)
        actions = {
            "start": session.game.start,
            "toggle": session.game.toggle_running,
            "fullscreen": session.game.toggle_fullscreen,
            "close": session.game.close,
        }
        if action not in actions:
            raise HTTPException(status_code=404, detail=f"Unknown game action: {action}")
        return await live_action(loop, session, actions[action])

    # Authentication endpoints
    @app.get("/api/auth/operator")
    async def check_operator_status(request: Request):
        """Check if user is currently authenticated as operator."""
        is_operator = check_operator(request)
        return {"operator": is_operator}

    @app.post("/api/auth/operator")
    async def authenticate_operator(
        request: Request,
        auth_data: OperatorAuthRequest,
        config: ConfigManager = Depends(get_config_manager),
    ):
        """Authenticate as operator with PIN."""
        correct_pin = config.get("operator_pin", "1234")
        if auth_data.pin == correct_pin:
            request.session["operator"] = True
            return {"status": "authenticated", "operator": True}
        else:
            raise HTTPException(status_code=401, detail="Invalid PIN")

    @app.post("/api/auth/logout")
    async def logout_operator(request: Request):
        """Exit operator mode."""
        request.session["operator"] = False
        return {"status": "logged_out", "operator": False}

    # Configuration endpoints
    @app.get("/api/config")
    async def get_config(config: ConfigManager = Depends(get_config_manager)):
        """
        Get all configuration with rich schema metadata.

        Returns:
            - values: Current configuration values
            - schema: Metadata for each editable key (control type, options, description)
            - groups: Group definitions for organizing the config UI
        """
        return config.get_full_config()

    @app.patch("/api/config")
    async def update_config(
        request_data: ConfigUpdateRequest,
        config: ConfigManager = Depends(get_config_manager),
        is_operator: bool = Depends(check_operator),
    ):
        """Update configuration (operator only)."""
        require_operator(is_operator)

        try:
            config.set(request_data.key, request_data.value)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {
            "status": "updated",
            "key": request_data.key,
            "value": request_data.value,
        }

    return app
