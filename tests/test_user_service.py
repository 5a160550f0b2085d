from datetime import datetime, timedelta, timezone

from models.database import write_json
from services import user_service
from services.auth_service import create_reset_token, decode_token, verify_password


def _register(email="kid@example.com", password="secret123"):
    user_service.save_verification_code(email, "123456")
    return user_service.register_user(email, password, "123456")


def test_is_valid_email():
    assert user_service.is_valid_email("a@b.co")
    assert not user_service.is_valid_email("no-at-sign.com")
    assert not user_service.is_valid_email("a b@c.com")
    assert not user_service.is_valid_email("")


def test_generate_verification_code_is_six_digits():
    for _ in range(20):
        code = user_service.generate_verification_code()
        assert len(code) == 6 and code.isdigit()
        assert 100000 <= int(code) <= 999999


def test_verify_code_missing():
    result = user_service.verify_code("kid@example.com", "123456")
    assert result == {"success": False, "message": user_service.MSG_CODE_MISSING}


def test_verify_code_wrong_then_right_then_used():
    user_service.save_verification_code("kid@example.com", "123456")
    assert user_service.verify_code("kid@example.com", "654321")["message"] == user_service.MSG_CODE_WRONG
    assert user_service.verify_code("kid@example.com", "123456")["success"]
    assert user_service.verify_code("kid@example.com", "123456")["message"] == user_service.MSG_CODE_USED


def test_verify_code_expired():
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    write_json(user_service._codes_file(), {
        "kid@example.com": {
            "code": "123456",
            "created_at": (past - timedelta(minutes=10)).isoformat(),
            "expires_at": past.isoformat(),
            "used": False,
        }
    })
    assert user_service.verify_code("kid@example.com", "123456")["message"] == user_service.MSG_CODE_EXPIRED


def test_code_lookup_ignores_email_case():
    user_service.save_verification_code("Kid@Example.com", "111111")
    assert user_service.verify_code("kid@example.com", "111111")["success"]


def test_cleanup_expired_codes():
    now = datetime.now(timezone.utc)
    write_json(user_service._codes_file(), {
        "old@example.com": {"code": "1", "created_at": now.isoformat(),
                            "expires_at": (now - timedelta(minutes=5)).isoformat(), "used": False},
        "new@example.com": {"code": "2", "created_at": now.isoformat(),
                            "expires_at": (now + timedelta(minutes=5)).isoformat(), "used": False},
    })
    assert user_service.cleanup_expired_codes() == 1
    assert list(user_service.get_verification_codes()) == ["new@example.com"]


def test_register_user():
    result = _register()
    assert result["success"]
    assert result["user"]["email"] == "kid@example.com"
    assert "password" not in result["user"]

    stored = user_service.get_user_by_email("KID@example.com")
    assert stored["is_verified"] is True
    assert stored["password"] != "secret123"
    assert verify_password("secret123", stored["password"])

    claims = decode_token(result["token"])
    assert claims["sub"] == stored["id"]
    assert claims["email"] == "kid@example.com"
    assert claims["verified"] is True


def test_register_rejects_invalid_email():
    assert user_service.register_user("nope", "secret123", "123456")["message"] == user_service.MSG_BAD_EMAIL


def test_register_requires_valid_code():
    user_service.save_verification_code("kid@example.com", "123456")
    result = user_service.register_user("kid@example.com", "secret123", "000000")
    assert not result["success"]
    assert user_service.get_user_by_email("kid@example.com") is None


def test_register_duplicate_email():
    _register()
    result = _register()
    assert result == {"success": False, "message": user_service.MSG_EMAIL_TAKEN}


def test_login_user():
    _register()
    assert user_service.login_user("kid@example.com", "wrong-pass")["message"] == user_service.MSG_BAD_PASSWORD
    assert user_service.login_user("other@example.com", "secret123")["message"] == user_service.MSG_UNKNOWN_EMAIL
    assert user_service.login_user("bad", "secret123")["message"] == user_service.MSG_BAD_EMAIL

    result = user_service.login_user("kid@example.com", "secret123")
    assert result["success"]
    assert result["user"]["last_login_at"] is not None
    assert user_service.get_user_by_email("kid@example.com")["last_login_at"] is not None


def test_update_password():
    user = _register()["user"]
    assert user_service.update_password(user["id"], "brand-new")
    assert user_service.login_user("kid@example.com", "brand-new")["success"]
    assert not user_service.update_password("missing-id", "whatever")


def test_user_stats():
    _register("a@example.com")
    _register("b@example.com")
    assert user_service.get_user_stats() == {"total_users": 2, "verified_users": 2, "unverified_users": 0}


def test_reset_token_carries_purpose():
    user = _register()["user"]
    claims = decode_token(create_reset_token(user))
    assert claims["purpose"] == "password_reset"
    assert claims["sub"] == user["id"]


def test_decode_token_rejects_garbage():
    assert decode_token("not-a-jwt") is None
