import json

from deliverycast.auth.session import SessionStore
from deliverycast.core.security import create_access_token

from fakes import T0


def test_round_trip_through_file(tmp_path):
    path = tmp_path / "session.json"
    SessionStore(str(path)).save("tok", {"_id": "driver-1", "userType": "driver"})

    stored = json.loads(path.read_text())
    assert stored == {"token": "tok", "user": {"_id": "driver-1", "userType": "driver"}, "isAuthenticated": True}

    session = SessionStore(str(path))
    assert session.is_authenticated
    assert session.user_id == "driver-1"
    assert session.role == "driver"


def test_identity_from_token_claims():
    session = SessionStore(path=None)
    session.save(create_access_token("driver-9", "driver"), {})
    assert session.user_id == "driver-9"
    assert session.role == "driver"


def test_token_expiry():
    session = SessionStore(path=None)
    session.save(create_access_token("driver-9", "driver", expire_min=1), {})
    exp_ms = session.claims()["exp"] * 1000
    assert not session.is_token_expired(exp_ms - 1)
    assert session.is_token_expired(exp_ms)


def test_opaque_token_never_expires_locally():
    session = SessionStore(path=None)
    session.save("not-a-jwt", {"id": "driver-1"})
    assert session.claims() == {}
    assert not session.is_token_expired(T0)


def test_clear_removes_file(tmp_path):
    path = tmp_path / "session.json"
    session = SessionStore(str(path))
    session.save("tok", {"id": "driver-1"})
    session.clear()
    assert not path.exists()
    assert session.token is None
    assert not session.is_authenticated


def test_corrupt_file_starts_signed_out(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")
    assert not SessionStore(str(path)).is_authenticated
