import jwt
import pytest

from app.core.security import create_access_token, decode_token, verify_admin_credentials
from app.utils import cache


def test_cache_expires(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(cache.time, "time", lambda: now[0])
    cache.set_cached("k", "v", ttl_seconds=10)
    assert cache.get_cached("k") == "v"
    now[0] += 11
    assert cache.get_cached("k") is None


def test_invalidate_prefix_only_touches_matching_keys():
    cache.set_cached("catalog:*", [1])
    cache.set_cached("catalog:phones", [2])
    cache.set_cached("daraja:token", "tok")
    assert cache.invalidate_prefix("catalog:") == 2
    assert cache.get_cached("catalog:*") is None
    assert cache.get_cached("daraja:token") == "tok"


def test_access_token_round_trip():
    payload = decode_token(create_access_token("admin", "admin"))
    assert payload["sub"] == "admin"
    assert payload["role"] == "admin"
    assert payload["type"] == "access"


def test_expired_token_is_rejected():
    token = create_access_token("admin", "admin", expires_minutes=-1)
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_token(token)


def test_admin_credentials():
    assert verify_admin_credentials("admin", "admin-pass")
    assert verify_admin_credentials(" admin ", "admin-pass")
    assert not verify_admin_credentials("admin", "wrong")
    assert not verify_admin_credentials("root", "admin-pass")
