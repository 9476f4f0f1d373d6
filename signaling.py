from typing import Any
from connections import ConnectionRegistry
from schemas.rooms import SignalEvent
from logging_config import get_logger

logger = get_logger(__name__)


class SignalingRelay:
    """Unicast forwarder for peer negotiation payloads. Payloads are never inspected."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def relay(self, from_id: str, to_id: str, payload: Any) -> bool:
        delivered = await self.registry.send(to_id, "signal", SignalEvent(from_id=from_id, payload=payload).dump())
        if not delivered:
            logger.debug(f"Signal from {from_id} to {to_id} dropped: target not connected")
        return delivered
