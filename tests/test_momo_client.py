import hashlib
import hmac
import json
import re
import pytest
import requests

from app.services.momo_client import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCESSFUL,
    AuthError,
    GatewayError,
    InvalidPhoneNumber,
    MomoClient,
    build_external_id,
    generate_idempotency_key,
    normalize_phone,
    normalize_remote_status,
    validate_phone,
)
from helpers import BASE_TIME, TEST_CALLBACK_SECRET, make_response, token_response


def sign(body: bytes, secret: str = TEST_CALLBACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.mark.parametrize("phone", ["+233244123456", "0244123456", " 0501234567 "])
def test_validate_phone_accepts_ghana_numbers(phone):
    assert validate_phone(phone) is True


@pytest.mark.parametrize("phone", ["1234567890", "+1234567890", "024412345", "+2332441234567", "", None])
def test_validate_phone_rejects_other_formats(phone):
    assert validate_phone(phone) is False


def test_normalize_phone_converts_local_prefix():
    assert normalize_phone("0244123456") == "+233244123456"
    assert normalize_phone("+233244123456") == "+233244123456"


def test_normalize_phone_raises_with_format_hint():
    with pytest.raises(InvalidPhoneNumber, match=r"\+233XXXXXXXXX or 0XXXXXXXXX"):
        normalize_phone("1234567890")


def test_generate_idempotency_key_embeds_order_id():
    key = generate_idempotency_key("order-123")
    assert re.match(r"^order:order-123:[0-9a-f-]{36}$", key)
    assert key != generate_idempotency_key("order-123")


def test_build_external_id_uses_milliseconds_and_chat():
    assert build_external_id(987654, BASE_TIME) == f"ecom_{int(BASE_TIME.timestamp() * 1000)}_987654"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("SUCCESSFUL", STATUS_SUCCESSFUL),
        ("success", STATUS_SUCCESSFUL),
        ("FAILED", STATUS_FAILED),
        ("Rejected", STATUS_FAILED),
        ("PENDING", STATUS_PENDING),
        ("ONGOING", STATUS_PENDING),
        (None, STATUS_PENDING),
    ],
)
def test_normalize_remote_status(raw, expected):
    assert normalize_remote_status(raw) == expected


def test_authenticate_caches_token_until_refresh_margin(momo_client, http_session, clock):
    http_session.post.return_value = token_response(expires_in=3600)

    assert momo_client.authenticate() == "token-abc"
    clock.advance(minutes=50)
    assert momo_client.authenticate() == "token-abc"
    assert http_session.post.call_count == 1

    # 3600s expiry minus the 300s margin
    clock.advance(minutes=5, seconds=1)
    momo_client.authenticate()
    assert http_session.post.call_count == 2


def test_authenticate_sends_basic_auth_and_subscription_key(momo_client, http_session):
    http_session.post.return_value = token_response()

    momo_client.authenticate()

    args, kwargs = http_session.post.call_args
    assert args[0] == "https://momo.test/collection/token/"
    assert kwargs["auth"] == ("momo-user-test", "momo-key-test")
    assert kwargs["headers"]["Ocp-Apim-Subscription-Key"] == "momo-sub-test"


def test_authenticate_requires_subscription_key(http_session):
    client = MomoClient(
        base_url="https://momo.test",
        user_id="user",
        api_key="key",
        subscription_key="",
        callback_secret="",
        session=http_session,
    )

    with pytest.raises(AuthError, match="subscription key not configured"):
        client.authenticate()
    http_session.post.assert_not_called()


def test_authenticate_requires_user_and_api_key(http_session):
    client = MomoClient(
        base_url="https://momo.test",
        user_id="",
        api_key="",
        subscription_key="sub",
        callback_secret="",
        session=http_session,
    )

    with pytest.raises(AuthError):
        client.authenticate()
    assert client.is_configured is False


def test_authenticate_raises_on_rejected_credentials(momo_client, http_session):
    http_session.post.return_value = make_response(401, text="Access denied")

    with pytest.raises(AuthError, match="HTTP 401"):
        momo_client.authenticate()


def test_initiate_collection_accepted(momo_client, http_session):
    http_session.post.side_effect = [token_response(), make_response(202)]

    result = momo_client.initiate_collection("25.00", "0244123456", "ecom_1_42", "EcomBot Purchase")

    assert result.accepted is True
    assert result.reason is None
    args, kwargs = http_session.post.call_args
    assert args[0] == "https://momo.test/collection/v1_0/requesttopay"
    assert kwargs["headers"]["X-Reference-Id"] == result.reference_id
    assert kwargs["headers"]["X-Target-Environment"] == "sandbox"
    assert kwargs["headers"]["Authorization"] == "Bearer token-abc"
    assert kwargs["json"] == {
        "amount": "25.00",
        "currency": "EUR",
        "externalId": "ecom_1_42",
        "payer": {"partyIdType": "MSISDN", "partyId": "+233244123456"},
        "payerMessage": "Payment for EcomBot Purchase",
        "payeeNote": "EcomBot order payment - ecom_1_42",
    }


def test_initiate_collection_rejected_by_provider(momo_client, http_session):
    http_session.post.side_effect = [token_response(), make_response(400, text="PAYER_NOT_FOUND")]

    result = momo_client.initiate_collection("25.00", "0244123456", "ecom_1_42")

    assert result.accepted is False
    assert result.reason == "Payment request failed: HTTP 400"
    assert result.request["externalId"] == "ecom_1_42"


def test_initiate_collection_transport_error_raises(momo_client, http_session):
    http_session.post.side_effect = [token_response(), requests.ConnectionError("connection reset")]

    with pytest.raises(GatewayError, match="collection request failed"):
        momo_client.initiate_collection("25.00", "0244123456", "ecom_1_42")


def test_initiate_collection_invalid_phone_skips_network(momo_client, http_session):
    with pytest.raises(InvalidPhoneNumber):
        momo_client.initiate_collection("25.00", "+1234567890", "ecom_1_42")

    http_session.post.assert_not_called()


def test_check_status_successful(momo_client, http_session):
    http_session.post.return_value = token_response()
    http_session.get.return_value = make_response(
        200,
        {"status": "SUCCESSFUL", "financialTransactionId": "ft-9", "externalId": "ecom_1_42"},
    )

    result = momo_client.check_status("ref-1")

    assert result.status == STATUS_SUCCESSFUL
    assert result.financial_transaction_id == "ft-9"
    assert result.transport_error is False
    assert http_session.get.call_args.args[0] == "https://momo.test/collection/v1_0/requesttopay/ref-1"


def test_check_status_failed_with_reason_object(momo_client, http_session):
    http_session.post.return_value = token_response()
    http_session.get.return_value = make_response(
        200,
        {"status": "FAILED", "reason": {"code": "APPROVAL_REJECTED", "message": "Payer rejected"}},
    )

    result = momo_client.check_status("ref-1")

    assert result.status == STATUS_FAILED
    assert result.reason == "Payer rejected"
    assert result.transport_error is False


def test_check_status_absorbs_http_errors(momo_client, http_session):
    http_session.post.return_value = token_response()
    http_session.get.return_value = make_response(500, text="boom")

    result = momo_client.check_status("ref-1")

    assert result.status == STATUS_FAILED
    assert result.transport_error is True
    assert result.reason.startswith("Status check failed")


def test_check_status_absorbs_network_and_auth_errors(momo_client, http_session):
    http_session.post.side_effect = requests.Timeout("timed out")

    result = momo_client.check_status("ref-1")

    assert result.transport_error is True
    http_session.get.assert_not_called()


def test_validate_signature_accepts_matching_hmac(momo_client):
    body = json.dumps({"referenceId": "ref-1", "status": "SUCCESSFUL"}).encode()

    assert momo_client.validate_signature(body, sign(body)) is True
    assert momo_client.validate_signature(body, sign(body).upper()) is True


def test_validate_signature_rejects_tampered_body(momo_client):
    body = b'{"referenceId":"ref-1","status":"SUCCESSFUL"}'
    signature = sign(body)
    tampered = body.replace(b"ref-1", b"ref-2")

    assert momo_client.validate_signature(tampered, signature) is False


def test_validate_signature_rejects_wrong_secret(momo_client):
    body = b'{"status":"SUCCESSFUL"}'

    assert momo_client.validate_signature(body, sign(body, "other-secret")) is False


def test_validate_signature_rejects_missing_signature_or_secret(momo_client):
    body = b'{"status":"SUCCESSFUL"}'
    assert momo_client.validate_signature(body, None) is False
    assert momo_client.validate_signature(body, "") is False

    momo_client.callback_secret = ""
    assert momo_client.validate_signature(body, sign(body)) is False


def test_validate_signature_rejects_non_ascii_signature(momo_client):
    assert momo_client.validate_signature(b"{}", "é" * 64) is False


def test_from_settings_warns_when_unconfigured(monkeypatch, caplog):
    from app.config import settings

    monkeypatch.setenv("MOMO_COLLECTION_USER_ID", "")

    client = MomoClient.from_settings(settings)

    assert client.is_configured is False
    assert "credentials not configured" in caplog.text
    assert isinstance(client.session, requests.Session)


def test_reset_token_forces_reauthentication(momo_client, http_session):
    http_session.post.return_value = token_response()
    momo_client.authenticate()
    momo_client.reset_token()
    momo_client.authenticate()

    assert http_session.post.call_count == 2


@pytest.mark.parametrize("body", [None, ["SUCCESSFUL"], "SUCCESSFUL"])
def test_check_status_absorbs_non_object_body(momo_client, http_session, body):
    http_session.post.return_value = token_response()
    response = make_response(200)
    response.json.side_effect = None
    response.json.return_value = body
    http_session.get.return_value = response

    result = momo_client.check_status("ref-1")

    assert result.status == STATUS_FAILED
    assert result.transport_error is True
    assert "Malformed status response" in result.reason
