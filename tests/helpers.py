from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from jose import jwt

from app.config import settings

TEST_CALLBACK_SECRET = "momo_whsec_test_mock"
BASE_TIME = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    return response


def token_response(expires_in: int = 3600) -> MagicMock:
    return make_response(200, {"access_token": "token-abc", "token_type": "access_token", "expires_in": expires_in})


def make_token(role: str | None = "admin", sub: str = "admin-1", **claims) -> str:
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(hours=1), **claims}
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def reload(db, model, pk):
    """Drop cached state and read the row again."""
    db.expire_all()
    return db.get(model, pk)
