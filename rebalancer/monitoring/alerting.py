"""
Webhook alerting for rebalance lifecycle events.

- Telegram bot API URLs are sent through sendMessage (Markdown)
- Slack and Discord payload shapes, generic JSON POST otherwise
- Rate limiting of repeated identical alerts
- Delivery failures are logged and swallowed, never raised to the caller
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx

from rebalancer.infra.logging_cfg import DEFAULT_LOGGER_NAME, log_event

EXPLORER_BASE: Dict[str, str] = {
    "mainnet": "https://suiscan.xyz/mainnet/tx",
    "testnet": "https://suiscan.xyz/testnet/tx",
    "devnet": "https://suiscan.xyz/devnet/tx",
}

TELEGRAM_HOST = "api.telegram.org"
_TELEGRAM_TOKEN_RE = re.compile(r"/bot([^/]+)/")


class AlertType(str, Enum):
    START = "rebalance_start"
    SUCCESS = "rebalance_success"
    FAILURE = "rebalance_failure"
    INFO = "info"


ALERT_EMOJI = {
    AlertType.START: "🔄",
    AlertType.SUCCESS: "✅",
    AlertType.FAILURE: "❌",
    AlertType.INFO: "ℹ️",
}


@dataclass
class AlertPayload:
    """An alert to be sent."""
    type: AlertType
    message: str
    tx_digest: Optional[str] = None
    network: Optional[str] = None
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "tx_digest": self.tx_digest,
            "network": self.network,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
        }


@dataclass
class AlertConfig:
    """Configuration for alerting."""
    webhook_url: Optional[str] = None
    webhook_type: str = "auto"  # auto, generic, telegram, slack, discord
    network: str = "mainnet"
    rate_limit_seconds: float = 60.0  # min seconds between identical alerts
    enabled: bool = True
    timeout_sec: float = 10.0
    retries: int = 2
    bot_name: str = "Cetus Rebalance Bot"


def explorer_url(tx_digest: str, network: Optional[str]) -> str:
    base = EXPLORER_BASE.get(network or "mainnet", EXPLORER_BASE["mainnet"])
    return f"{base}/{tx_digest}"


def build_message(payload: AlertPayload, bot_name: str = "Cetus Rebalance Bot") -> str:
    emoji = ALERT_EMOJI.get(payload.type, "📢")
    text = f"{emoji} *{bot_name}*\n{payload.message}"
    if payload.tx_digest:
        text += f"\n[View TX]({explorer_url(payload.tx_digest, payload.network)})"
    return text


def parse_telegram_url(url: str) -> Optional[Tuple[str, str]]:
    """(bot_token, chat_id) for a Telegram bot API URL, else None."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.hostname != TELEGRAM_HOST:
        return None
    chat_ids = parse_qs(parsed.query).get("chat_id")
    match = _TELEGRAM_TOKEN_RE.search(parsed.path)
    if not chat_ids or not match:
        return None
    return match.group(1), chat_ids[0]


class WebhookFormatter:
    """Formats alerts for different webhook types. Each returns (url, body)."""

    @staticmethod
    def format_generic(payload: AlertPayload, config: AlertConfig) -> Tuple[str, Dict[str, Any]]:
        return config.webhook_url or "", {"text": build_message(payload, config.bot_name), "payload": payload.to_dict()}

    @staticmethod
    def format_telegram(payload: AlertPayload, config: AlertConfig) -> Tuple[str, Dict[str, Any]]:
        parsed = parse_telegram_url(config.webhook_url or "")
        if parsed is None:
            return WebhookFormatter.format_generic(payload, config)
        token, chat_id = parsed
        return f"https://{TELEGRAM_HOST}/bot{token}/sendMessage", {
            "chat_id": chat_id,
            "text": build_message(payload, config.bot_name),
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

    @staticmethod
    def format_slack(payload: AlertPayload, config: AlertConfig) -> Tuple[str, Dict[str, Any]]:
        color = {
            AlertType.FAILURE: "#FF0000",
            AlertType.START: "#FFA500",
            AlertType.SUCCESS: "#2EB886",
        }.get(payload.type, "#0000FF")
        fields = [{"title": "Type", "value": payload.type.value, "short": True}]
        if payload.network:
            fields.append({"title": "Network", "value": payload.network, "short": True})
        text = payload.message
        if payload.tx_digest:
            text += f"\n<{explorer_url(payload.tx_digest, payload.network)}|View TX>"
        return config.webhook_url or "", {
            "username": config.bot_name,
            "attachments": [{
                "color": color,
                "title": f"{ALERT_EMOJI.get(payload.type, '📢')} {config.bot_name}",
                "text": text,
                "fields": fields,
                "ts": payload.timestamp_ms // 1000,
            }],
        }

    @staticmethod
    def format_discord(payload: AlertPayload, config: AlertConfig) -> Tuple[str, Dict[str, Any]]:
        color = {
            AlertType.FAILURE: 0xFF0000,
            AlertType.START: 0xFFA500,
            AlertType.SUCCESS: 0x2EB886,
        }.get(payload.type, 0x0000FF)
        embed: Dict[str, Any] = {
            "title": f"{ALERT_EMOJI.get(payload.type, '📢')} {config.bot_name}",
            "description": payload.message,
            "color": color,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(payload.timestamp_ms / 1000)),
        }
        if payload.tx_digest:
            embed["url"] = explorer_url(payload.tx_digest, payload.network)
        return config.webhook_url or "", {"username": config.bot_name, "embeds": [embed]}


class AlertManager:
    """
    Sends alerts to one webhook.

    Constructed explicitly and passed to the components that need it.
    Owns its httpx client unless one is injected.
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        logger: Optional[logging.Logger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or AlertConfig()
        self._log = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self._last_sent: Dict[Tuple[AlertType, str], float] = {}
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_sec)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _resolve_type(self) -> str:
        kind = self.config.webhook_type
        if kind == "auto":
            return "telegram" if parse_telegram_url(self.config.webhook_url or "") else "generic"
        return kind

    def _format(self, payload: AlertPayload) -> Tuple[str, Dict[str, Any]]:
        formatters = {
            "generic": WebhookFormatter.format_generic,
            "telegram": WebhookFormatter.format_telegram,
            "slack": WebhookFormatter.format_slack,
            "discord": WebhookFormatter.format_discord,
        }
        formatter = formatters.get(self._resolve_type(), WebhookFormatter.format_generic)
        return formatter(payload, self.config)

    def _rate_limited(self, payload: AlertPayload) -> bool:
        if self.config.rate_limit_seconds <= 0:
            return False
        key = (payload.type, payload.message)
        now = time.monotonic()
        window = self.config.rate_limit_seconds
        self._last_sent = {k: t for k, t in self._last_sent.items() if now - t < window}
        last = self._last_sent.get(key)
        if last is not None and now - last < window:
            return True
        self._last_sent[key] = now
        return False

    async def notify(self, payload: AlertPayload) -> bool:
        """
        Deliver an alert.

        Returns:
            True if delivered; False if disabled, unconfigured, rate limited
            or the delivery failed (failures are only logged)
        """
        if not self.config.enabled or not self.config.webhook_url:
            return False
        if payload.network is None:
            payload.network = self.config.network
        if self._rate_limited(payload):
            log_event(self._log, "alert_rate_limited", level=logging.DEBUG, type=payload.type.value)
            return False

        try:
            url, body = self._format(payload)
            return await self._http_post(url, body)
        except Exception as exc:
            # A bad webhook URL or a transport bug must never reach the caller.
            log_event(self._log, "alert_delivery_error", level=logging.WARNING,
                      type=payload.type.value, err=repr(exc))
            return False

    async def _http_post(self, url: str, body: Dict[str, Any]) -> bool:
        retries = self.config.retries
        for attempt in range(retries + 1):
            try:
                resp = await self._client.post(url, json=body)
                if resp.status_code < 300:
                    return True
                log_event(self._log, "alert_delivery_error", level=logging.WARNING,
                          status=resp.status_code, attempt=attempt)
            except httpx.HTTPError as exc:
                log_event(self._log, "alert_delivery_error", level=logging.WARNING,
                          err=str(exc), attempt=attempt)
            if attempt < retries:
                await asyncio.sleep(1 * (attempt + 1))
        return False

    # Convenience methods

    async def alert_start(self, message: str, **details: Any) -> bool:
        return await self.notify(AlertPayload(type=AlertType.START, message=message, details=details))

    async def alert_success(self, message: str, tx_digest: Optional[str] = None, **details: Any) -> bool:
        return await self.notify(AlertPayload(type=AlertType.SUCCESS, message=message,
                                              tx_digest=tx_digest, details=details))

    async def alert_failure(self, message: str, **details: Any) -> bool:
        return await self.notify(AlertPayload(type=AlertType.FAILURE, message=message, details=details))

    async def alert_info(self, message: str, **details: Any) -> bool:
        return await self.notify(AlertPayload(type=AlertType.INFO, message=message, details=details))


async def notify(
    endpoint: Optional[str],
    payload: AlertPayload,
    client: Optional[httpx.AsyncClient] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """One-shot alert to `endpoint`; no-op when endpoint is empty."""
    if not endpoint:
        return False
    manager = AlertManager(AlertConfig(webhook_url=endpoint, rate_limit_seconds=0), logger=logger, client=client)
    try:
        return await manager.notify(payload)
    finally:
        await manager.close()
