"""
Tests for webhook alerting.

Tests cover:
- Message formatting with explorer links
- Telegram URL detection and sendMessage payloads
- Generic, Slack and Discord payload shapes
- Disabled / unconfigured / rate-limited alerts
- Delivery failures are swallowed
"""

import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from rebalancer.monitoring.alerting import (
    AlertConfig,
    AlertManager,
    AlertPayload,
    AlertType,
    WebhookFormatter,
    build_message,
    notify,
    parse_telegram_url,
)

TELEGRAM_URL = "https://api.telegram.org/bot123:ABC/sendMessage?chat_id=-10042"


def recording_client(status_code: int = 200):
    """httpx client backed by MockTransport; returns (client, captured requests)."""
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 300})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), captured


class TestFormatting:
    def test_message_with_explorer_link(self):
        payload = AlertPayload(type=AlertType.SUCCESS, message="done", tx_digest="ABC", network="testnet")

        text = build_message(payload)

        assert text.startswith("✅ *Cetus Rebalance Bot*\ndone")
        assert "https://suiscan.xyz/testnet/tx/ABC" in text

    def test_message_without_digest(self):
        text = build_message(AlertPayload(type=AlertType.FAILURE, message="boom"))

        assert text == "❌ *Cetus Rebalance Bot*\nboom"

    def test_unknown_network_uses_mainnet(self):
        payload = AlertPayload(type=AlertType.START, message="x", tx_digest="D", network="localnet")

        assert "https://suiscan.xyz/mainnet/tx/D" in build_message(payload)

    def test_payload_to_dict(self):
        data = AlertPayload(type=AlertType.START, message="m").to_dict()

        assert data["type"] == "rebalance_start"
        assert "timestamp_iso" in data


class TestTelegramDetection:
    def test_parses_token_and_chat(self):
        assert parse_telegram_url(TELEGRAM_URL) == ("123:ABC", "-10042")

    @pytest.mark.parametrize("url", [
        "https://hooks.example.com/bot123/x?chat_id=1",
        "https://api.telegram.org/bot123:ABC/sendMessage",
        "not a url",
    ])
    def test_non_telegram(self, url):
        assert parse_telegram_url(url) is None


class TestWebhookFormatter:
    def test_telegram_payload(self):
        config = AlertConfig(webhook_url=TELEGRAM_URL)
        url, body = WebhookFormatter.format_telegram(AlertPayload(type=AlertType.INFO, message="hi"), config)

        assert url == "https://api.telegram.org/bot123:ABC/sendMessage"
        assert body["chat_id"] == "-10042"
        assert body["parse_mode"] == "Markdown"
        assert "hi" in body["text"]

    def test_generic_payload(self):
        config = AlertConfig(webhook_url="https://hooks.example.com/x")
        url, body = WebhookFormatter.format_generic(AlertPayload(type=AlertType.INFO, message="hi"), config)

        assert url == "https://hooks.example.com/x"
        assert "hi" in body["text"]
        assert body["payload"]["type"] == "info"

    def test_slack_payload(self):
        config = AlertConfig(webhook_url="https://hooks.slack.com/x")
        payload = AlertPayload(type=AlertType.FAILURE, message="bad", tx_digest="D", network="mainnet")
        _, body = WebhookFormatter.format_slack(payload, config)

        attachment = body["attachments"][0]
        assert attachment["color"] == "#FF0000"
        assert "suiscan.xyz/mainnet/tx/D" in attachment["text"]

    def test_discord_payload(self):
        config = AlertConfig(webhook_url="https://discord.com/api/webhooks/x")
        _, body = WebhookFormatter.format_discord(AlertPayload(type=AlertType.SUCCESS, message="ok"), config)

        assert body["embeds"][0]["description"] == "ok"
        assert body["embeds"][0]["color"] == 0x2EB886


class TestAlertManager:
    @pytest.mark.asyncio
    async def test_auto_detects_telegram(self):
        client, captured = recording_client()
        manager = AlertManager(AlertConfig(webhook_url=TELEGRAM_URL, rate_limit_seconds=0), client=client)

        assert await manager.alert_start("triggered") is True

        assert len(captured) == 1
        assert str(captured[0].url) == "https://api.telegram.org/bot123:ABC/sendMessage"
        body = json.loads(captured[0].content)
        assert body["chat_id"] == "-10042"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_generic_post(self):
        client, captured = recording_client()
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", network="testnet"),
                               client=client)

        await manager.alert_success("done", tx_digest="0xD")

        body = json.loads(captured[0].content)
        assert body["payload"]["type"] == "rebalance_success"
        assert body["payload"]["network"] == "testnet"
        assert "suiscan.xyz/testnet/tx/0xD" in body["text"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_disabled(self):
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", enabled=False))
        with patch.object(manager, "_http_post", new_callable=AsyncMock) as mock_post:
            assert await manager.alert_info("x") is False
        mock_post.assert_not_called()
        await manager.close()

    @pytest.mark.asyncio
    async def test_no_webhook(self):
        manager = AlertManager(AlertConfig(webhook_url=None))
        assert await manager.alert_failure("x") is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_rate_limiting_identical_alerts(self):
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", rate_limit_seconds=60))
        with patch.object(manager, "_http_post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = True
            first = await manager.alert_failure("same")
            second = await manager.alert_failure("same")
            other = await manager.alert_failure("different")

        assert (first, second, other) == (True, False, True)
        await manager.close()

    @pytest.mark.asyncio
    async def test_http_error_status_is_swallowed(self, monkeypatch):
        monkeypatch.setattr("rebalancer.monitoring.alerting.asyncio.sleep", AsyncMock())
        client, captured = recording_client(status_code=500)
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", retries=2), client=client)

        assert await manager.alert_info("x") is False
        assert len(captured) == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_swallowed(self, monkeypatch):
        monkeypatch.setattr("rebalancer.monitoring.alerting.asyncio.sleep", AsyncMock())

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", retries=1), client=client)

        assert await manager.alert_info("x") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_webhook_url_is_swallowed(self):
        client, captured = recording_client()
        manager = AlertManager(AlertConfig(webhook_url="http://[::1/hook", retries=0), client=client)

        assert await manager.alert_failure("x") is False
        assert captured == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_rate_limit_memory_forgets_expired_entries(self):
        manager = AlertManager(AlertConfig(webhook_url="https://hooks.example.com/x", rate_limit_seconds=10))
        stale = time.monotonic() - 20
        manager._last_sent = {(AlertType.FAILURE, f"old {i}"): stale for i in range(50)}

        with patch.object(manager, "_http_post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = True
            assert await manager.alert_failure("later") is True

        assert list(manager._last_sent) == [(AlertType.FAILURE, "later")]
        await manager.close()


class TestNotify:
    @pytest.mark.asyncio
    async def test_no_endpoint_is_noop(self):
        assert await notify(None, AlertPayload(type=AlertType.INFO, message="x")) is False
        assert await notify("", AlertPayload(type=AlertType.INFO, message="x")) is False

    @pytest.mark.asyncio
    async def test_delivers_and_leaves_shared_client_open(self):
        client, captured = recording_client()

        ok = await notify("https://hooks.example.com/x", AlertPayload(type=AlertType.INFO, message="x"), client=client)

        assert ok is True
        assert len(captured) == 1
        assert not client.is_closed
        await client.aclose()
