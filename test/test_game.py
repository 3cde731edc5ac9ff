"""
Unit tests for GameOverlayMachine.
"""

import pytest

from jamsync.game import GAMES, GameOverlayMachine, OverlayState
from jamsync.models import Band
from jamsync.queue import BandQueueManager
from jamsync.state import StateStore
from jamsync.timer import LiveTimerMachine, TimerState


@pytest.fixture
def live_timer(manual_loop):
    queue_manager = BandQueueManager(StateStore())
    queue_manager.append(Band(id="b1", name="BandA", duration_minutes=2))
    machine = LiveTimerMachine(manual_loop, queue_manager)
    machine.reset()
    return machine


@pytest.fixture
def game(manual_loop, live_timer):
    machine = GameOverlayMachine(manual_loop, live_timer)
    yield machine
    machine.close()


def test_catalog():
    assert [g.id for g in GAMES] == ["game-hand", "game-foot"]
    assert GAMES[0].title == "UNA MANO SOLA"


def test_select_game_opens_explain(game):
    assert game.select_game("game-hand")
    assert game.state == OverlayState.EXPLAIN
    assert game.active_game.id == "game-hand"
    assert game.selected_duration == 60
    assert game.is_open
    assert not game.is_playing


def test_select_unknown_game(game):
    assert not game.select_game("game-nose")
    assert game.state == OverlayState.OFF


def test_select_only_from_off(game):
    game.select_game("game-hand")
    assert not game.select_game("game-foot")
    assert game.active_game.id == "game-hand"


def test_choose_duration(game):
    assert not game.choose_duration(120)

    game.select_game("game-foot")
    assert game.choose_duration(120)
    assert not game.choose_duration(45)
    assert game.selected_duration == 120


def test_selection_resets_duration(game):
    game.select_game("game-foot")
    game.choose_duration(180)
    game.close()

    game.select_game("game-foot")
    assert game.selected_duration == 60


def test_start_also_starts_paused_band_timer(game, live_timer):
    assert live_timer.state == TimerState.PAUSED
    game.select_game("game-hand")
    game.choose_duration(30)

    assert game.start()

    assert game.state == OverlayState.PLAYING
    assert game.remaining == 30
    assert game.running
    assert live_timer.state == TimerState.RUNNING
    assert live_timer.remaining == 120


def test_start_leaves_empty_band_timer_alone(game, live_timer):
    live_timer.set_absolute("0")
    game.select_game("game-hand")
    game.start()
    assert live_timer.state == TimerState.PAUSED


def test_start_requires_explain(game):
    assert not game.start()


def test_countdowns_are_independent(game, live_timer, manual_loop):
    game.select_game("game-hand")
    game.start()
    manual_loop.advance(5)
    assert game.remaining == 55
    assert live_timer.remaining == 115

    game.toggle_running()
    manual_loop.advance(5)
    assert game.remaining == 55
    assert live_timer.remaining == 110


def test_game_expires_and_add_time_restarts(game, manual_loop):
    game.select_game("game-hand")
    game.choose_duration(30)
    game.start()
    manual_loop.advance(30)

    assert game.remaining == 0
    assert game.expired
    assert not game.running
    assert game.state == OverlayState.PLAYING

    assert game.add_time() == 30
    assert not game.expired
    assert game.running
    manual_loop.advance(1)
    assert game.remaining == 29


def test_add_time_while_running(game):
    game.select_game("game-hand")
    game.start()
    assert game.add_time(15) == 75
    assert game.add_time() == 105


def test_toggle_running_after_expiry_is_ignored(game, manual_loop):
    game.select_game("game-hand")
    game.choose_duration(30)
    game.start()
    manual_loop.advance(30)
    assert not game.toggle_running()


def test_toggle_fullscreen(game):
    assert not game.toggle_fullscreen()
    game.select_game("game-foot")
    game.start()

    assert game.toggle_fullscreen()
    assert game.state == OverlayState.FULLSCREEN_PLAYING
    assert game.toggle_fullscreen()
    assert game.state == OverlayState.PLAYING


def test_close_from_any_state(game, manual_loop, live_timer):
    game.select_game("game-foot")
    game.start()
    game.toggle_fullscreen()

    game.close()

    assert game.state == OverlayState.OFF
    assert game.active_game is None
    manual_loop.advance(5)
    assert game.remaining == 0
    # Closing a game does not stop the band
    assert live_timer.state == TimerState.RUNNING


def test_start_leaves_ready_band_timer_alone(manual_loop):
    live_timer = LiveTimerMachine(manual_loop, BandQueueManager(StateStore()))
    live_timer.reset()
    live_timer.set_absolute("1:00")
    assert live_timer.state == TimerState.READY

    machine = GameOverlayMachine(manual_loop, live_timer)
    machine.select_game("game-hand")
    assert machine.start()

    assert live_timer.state == TimerState.READY
    assert live_timer.remaining == 60
    machine.close()
