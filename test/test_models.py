"""
Unit tests for the data models and their wire format.
"""

from datetime import datetime, timezone

import pytest

from jamsync.models import (
    Band,
    BandMember,
    InstrumentType,
    JamState,
    User,
    UserStatus,
    resolve_role,
)


def make_user(user_id="u1", instruments=(InstrumentType.GUITAR,), custom=None):
    return User(
        id=user_id,
        first_name="Marco",
        last_name="Rossi",
        username=f"user_{user_id}",
        instruments=list(instruments),
        custom_instrument=custom,
    )


def test_user_round_trip_uses_camel_case():
    """Users serialize with camelCase keys and parse back unchanged."""
    user = make_user(instruments=(InstrumentType.VOICE, InstrumentType.OTHER), custom="Sax")
    user.created_at = datetime(2024, 5, 1, 21, 0, tzinfo=timezone.utc)

    data = user.to_dict()
    assert data["firstName"] == "Marco"
    assert data["instruments"] == ["voice", "other"]
    assert data["customInstrument"] == "Sax"
    assert data["status"] == "ACTIVE"

    assert User.from_dict(data) == user


def test_user_from_dict_accepts_epoch_millis():
    data = make_user().to_dict()
    data["createdAt"] = 1714597200000
    user = User.from_dict(data)
    assert user.created_at == datetime(2024, 5, 1, 21, 0, tzinfo=timezone.utc)


def test_user_from_dict_rejects_unknown_instrument():
    data = make_user().to_dict()
    data["instruments"] = ["theremin"]
    with pytest.raises(ValueError):
        User.from_dict(data)


def test_resolve_role_accepts_declared_instrument():
    user = make_user(instruments=(InstrumentType.GUITAR, InstrumentType.VOICE))
    assert resolve_role(user, InstrumentType.VOICE) == InstrumentType.VOICE
    assert resolve_role(user, "guitar") == InstrumentType.GUITAR


def test_resolve_role_maps_custom_label_to_other():
    user = make_user(instruments=(InstrumentType.OTHER,), custom="Sax")
    assert resolve_role(user, "sax") == InstrumentType.OTHER


def test_resolve_role_rejects_undeclared_instrument():
    user = make_user(instruments=(InstrumentType.GUITAR,))
    with pytest.raises(ValueError):
        resolve_role(user, InstrumentType.DRUMS)
    with pytest.raises(ValueError):
        resolve_role(user, "kazoo")


def test_band_member_is_a_snapshot():
    """Editing the roster user afterwards does not touch the member copy."""
    user = make_user()
    member = BandMember.from_user(user, InstrumentType.GUITAR)
    user.instruments.append(InstrumentType.BASS)
    user.username = "renamed"

    assert member.instruments == [InstrumentType.GUITAR]
    assert member.username == "user_u1"
    assert member.assigned_role == InstrumentType.GUITAR


def test_band_member_requires_a_role():
    with pytest.raises(ValueError):
        BandMember(
            id="u1", first_name="Marco", last_name="Rossi", username="marco", instruments=[]
        )
    with pytest.raises(ValueError):
        BandMember.from_dict({**make_user().to_dict(), "assignedRole": "kazoo"})
    with pytest.raises(KeyError):
        BandMember.from_dict(make_user().to_dict())


def test_band_member_role_label_prefers_custom():
    user = make_user(instruments=(InstrumentType.OTHER,), custom="Sax")
    member = BandMember.from_user(user, InstrumentType.OTHER)
    assert member.role_label == "Sax"
    assert member.to_dict()["assignedRole"] == "other"


def test_band_round_trip():
    user = make_user()
    band = Band(
        id="b1",
        name="Forrest Funk",
        members=[BandMember.from_user(user, InstrumentType.GUITAR)],
        duration_minutes=6.5,
        end_time=datetime(2024, 5, 1, 22, 0, tzinfo=timezone.utc),
    )
    data = band.to_dict()
    assert data["durationMinutes"] == 6.5
    assert data["members"][0]["assignedRole"] == "guitar"
    assert Band.from_dict(data) == band


def test_band_duration_defaults_and_normalizes():
    """Missing duration means six minutes; ints and floats compare equal on the wire."""
    band = Band.from_dict({"id": "b1", "name": "X"})
    assert band.duration_minutes == 6.0
    assert Band(id="b1", name="X", duration_minutes=6).to_dict() == band.to_dict()


def test_jam_state_with_changes_stores_tuples():
    user = make_user()
    state = JamState().with_changes(users=[user])
    assert state.users == (user,)
    assert state.bands == ()


def test_user_status_values():
    assert UserStatus("PAUSED") == UserStatus.PAUSED
    assert not User.from_dict({**make_user().to_dict(), "status": "PAUSED"}).is_active
