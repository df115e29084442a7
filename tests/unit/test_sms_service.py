import httpx
import pytest

from shared import sms_service
from shared.sms_service import SmsError, count_recent_sends, is_valid_e164, normalize_phone, send_sms


@pytest.fixture
def twilio_configured(monkeypatch):
    monkeypatch.setattr(sms_service, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(sms_service, "TWILIO_AUTH_TOKEN", "secret")
    monkeypatch.setattr(sms_service, "TWILIO_PHONE_NUMBER", "+15550000000")


def test_e164_validation():
    assert is_valid_e164("+14155551234")
    assert not is_valid_e164("4155551234")
    assert not is_valid_e164("+0123456789")
    assert not is_valid_e164("")


def test_normalize_phone_strips_formatting():
    assert normalize_phone("+1 (415) 555-1234") == "+14155551234"


@pytest.mark.asyncio
async def test_send_sms_without_credentials_is_a_no_op(monkeypatch):
    monkeypatch.setattr(sms_service, "TWILIO_ACCOUNT_SID", None)
    assert await send_sms("+14155551234", "hello") is None


@pytest.mark.asyncio
async def test_send_sms_returns_message_sid(twilio_configured):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.content.decode()
        return httpx.Response(201, json={"sid": "SM42"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sid = await send_sms("+14155551234", "Hi there", client=client)

    assert sid == "SM42"
    assert captured["url"].endswith("/Accounts/AC123/Messages.json")
    assert "To=%2B14155551234" in captured["body"]


@pytest.mark.asyncio
async def test_send_sms_raises_with_provider_message(twilio_configured):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Invalid 'To' Phone Number"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SmsError, match="Invalid 'To' Phone Number"):
            await send_sms("+14155551234", "Hi", client=client)


@pytest.mark.asyncio
async def test_count_recent_sends_filters_by_phone(db):
    db.fetch_one.return_value = {"total": 3}

    total = await count_recent_sends(db, "welcome", 24, phone_number="+14155551234")

    assert total == 3
    query, *args = db.fetch_one.call_args.args
    assert "phone_number = $3" in query
    assert args == ["welcome", 24, "+14155551234"]
