"""
Gateway - Outbound Messaging

Components:
- BaseGateway: Interface every messaging backend implements
- TelegramGateway: Telegram Bot API client on aiohttp
- GatewayResult: Success-or-structured-failure returned by every call
"""

from gateway.base_client import BaseGateway, OutboundMedia
from gateway.error_types import (
    DeliveryFailed,
    GatewayCallError,
    GatewayResult,
    GroupFlushRaced,
    RelayError,
    ThreadCreationFailed,
    ThreadMissing,
    is_thread_missing,
    raise_for_result,
)
from gateway.telegram_client import TelegramGateway

__all__ = [
    'BaseGateway', 'OutboundMedia', 'TelegramGateway', 'GatewayResult',
    'RelayError', 'ThreadCreationFailed', 'GatewayCallError', 'ThreadMissing',
    'DeliveryFailed', 'GroupFlushRaced', 'is_thread_missing', 'raise_for_result',
]
