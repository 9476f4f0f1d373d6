from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional
from logging_config import get_logger

logger = get_logger(__name__)


class PeerRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


@dataclass
class PeerLink:
    """Local handle to the media connection with one remote member."""

    peer_id: str
    role: PeerRole
    connection: Any
    remote_username: str = "Connecting..."
    remote_muted: bool = True
    remote_stream: Optional[Any] = None

    @property
    def state(self) -> str:
        return "connecting" if self.remote_stream is None else "connected"


class PeerRegistry:
    """
    The only place peer links are stored.

    Mutation goes through insert_if_absent and remove so that a second link
    for the same peer is visible as a rejected insert, not a silent overwrite.
    """

    def __init__(self):
        self._links: Dict[str, PeerLink] = {}

    def insert_if_absent(self, link: PeerLink) -> bool:
        if link.peer_id in self._links:
            logger.warning(f"Rejected duplicate {link.role.value} link for peer {link.peer_id}")
            return False
        self._links[link.peer_id] = link
        return True

    def remove(self, peer_id: str) -> Optional[PeerLink]:
        return self._links.pop(peer_id, None)

    def get(self, peer_id: str) -> Optional[PeerLink]:
        return self._links.get(peer_id)

    def ids(self) -> List[str]:
        return list(self._links)

    def __iter__(self) -> Iterator[PeerLink]:
        return iter(list(self._links.values()))

    def __len__(self) -> int:
        return len(self._links)

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._links
