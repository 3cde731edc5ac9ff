"""
Unit tests for UserManager.
"""

import pytest

from jamsync.models import Band, BandMember, InstrumentType, UserStatus
from jamsync.state import StateStore
from jamsync.user import UserManager


@pytest.fixture
def state_store():
    return StateStore()


@pytest.fixture
def user_manager(state_store):
    """Create a UserManager instance for testing."""
    return UserManager(state_store)


def register(user_manager, username, *instruments, first_name="Anna", custom=None):
    return user_manager.register(
        first_name=first_name,
        last_name="Neri",
        username=username,
        instruments=list(instruments) or [InstrumentType.GUITAR],
        custom_instrument=custom,
    )


def test_register_user(user_manager):
    """Test registering a musician."""
    user = user_manager.register(
        first_name=" Anna ",
        last_name="Neri",
        username="anna",
        instruments=[InstrumentType.VOICE, InstrumentType.VOICE, InstrumentType.KEYS],
        email="  ",
        instagram="@anna",
    )

    assert user.first_name == "Anna"
    assert user.status == UserStatus.ACTIVE
    assert user.instruments == [InstrumentType.VOICE, InstrumentType.KEYS]
    assert user.email is None
    assert user.instagram == "@anna"
    assert user.created_at is not None
    assert user_manager.get_user(user.id) == user


def test_register_requires_names(user_manager):
    with pytest.raises(ValueError):
        user_manager.register("", "Neri", "anna", [InstrumentType.VOICE])
    with pytest.raises(ValueError):
        user_manager.register("Anna", "Neri", "   ", [InstrumentType.VOICE])
    assert user_manager.get_users() == []


def test_register_requires_an_instrument(user_manager):
    with pytest.raises(ValueError):
        user_manager.register("Anna", "Neri", "anna", [])


def test_register_other_requires_label(user_manager):
    with pytest.raises(ValueError):
        register(user_manager, "anna", InstrumentType.OTHER)

    user = register(user_manager, "anna", InstrumentType.OTHER, custom=" Sax ")
    assert user.custom_instrument == "Sax"


def test_custom_label_dropped_without_other(user_manager):
    user = register(user_manager, "anna", InstrumentType.GUITAR, custom="Sax")
    assert user.custom_instrument is None


def test_ids_are_unique(user_manager):
    first = register(user_manager, "anna")
    second = register(user_manager, "anna")
    assert first.id != second.id


def test_toggle_status(user_manager):
    user = register(user_manager, "anna")

    assert user_manager.toggle_status(user.id) == UserStatus.PAUSED
    assert user_manager.active_count() == 0
    assert user_manager.toggle_status(user.id) == UserStatus.ACTIVE
    assert user_manager.active_count() == 1
    assert user_manager.toggle_status("missing") is None


def test_set_status_unchanged(user_manager):
    user = register(user_manager, "anna")
    assert not user_manager.set_status(user.id, UserStatus.ACTIVE)
    assert user_manager.set_status(user.id, UserStatus.PAUSED)


def test_delete_user_keeps_band_snapshots(user_manager, state_store):
    user = register(user_manager, "anna")
    band = Band(id="b1", name="X", members=[BandMember.from_user(user, InstrumentType.GUITAR)])
    state_store.replace(bands=[band])

    assert user_manager.delete_user(user.id)
    assert user_manager.get_user(user.id) is None
    assert state_store.bands[0].members[0].id == user.id
    assert not user_manager.delete_user(user.id)


def test_available_for_band(user_manager):
    anna = register(user_manager, "anna", InstrumentType.VOICE, first_name="Anna")
    bruno = register(user_manager, "bruno", InstrumentType.DRUMS, first_name="Bruno")
    carla = register(user_manager, "carla", InstrumentType.DRUMS, first_name="Carla")
    dario = register(user_manager, "dario", InstrumentType.BASS, first_name="Dario")
    user_manager.set_status(dario.id, UserStatus.PAUSED)
    band = Band(id="b1", name="X", members=[BandMember.from_user(anna, InstrumentType.VOICE)])

    assert user_manager.available_for_band(band) == [bruno, carla]
    assert user_manager.available_for_band(band, search="CAR") == [carla]
    assert user_manager.available_for_band(None, instrument=InstrumentType.VOICE) == [anna]
