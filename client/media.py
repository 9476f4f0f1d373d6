"""
aiortc adapters: local microphone capture and one RTCPeerConnection per link.

Negotiation payloads are plain dicts in the shape browsers exchange
(`{"type": "offer"|"answer", "sdp": ...}` and
`{"type": "candidate", "candidate": {...}}`); the server never looks at them.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer, MediaRelay
from aiortc.sdp import candidate_from_sdp
from av import AudioFrame

from errors import CaptureUnavailable
from logging_config import get_logger

logger = get_logger(__name__)


class MutableAudioTrack(MediaStreamTrack):
    """Forwards microphone frames, or silence of the same shape while disabled."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.source = source
        self.enabled = True

    async def recv(self) -> AudioFrame:
        frame = await self.source.recv()
        if self.enabled:
            return frame
        silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in silent.planes:
            plane.update(bytes(plane.buffer_size))
        silent.pts = frame.pts
        silent.sample_rate = frame.sample_rate
        silent.time_base = frame.time_base
        return silent

    def stop(self):
        super().stop()
        self.source.stop()


class LocalMedia:
    """The local capture stream, shared by every peer link through a relay."""

    def __init__(self, player: MediaPlayer):
        self.player = player
        self.track = MutableAudioTrack(player.audio)
        self.relay = MediaRelay()

    @property
    def muted(self) -> bool:
        return not self.track.enabled

    def set_muted(self, muted: bool):
        self.track.enabled = not muted

    def subscribe(self) -> MediaStreamTrack:
        return self.relay.subscribe(self.track)

    def stop(self):
        self.track.stop()
        logger.debug("Local capture stopped")


async def acquire_local_media(device: str = "default", format: str = "pulse", options: Optional[dict] = None) -> LocalMedia:
    """Open the microphone. Blocks until the device is granted or refused."""
    loop = asyncio.get_running_loop()

    def open_device() -> MediaPlayer:
        return MediaPlayer(device, format=format, options=options or {})

    try:
        player = await loop.run_in_executor(None, open_device)
    except Exception as e:
        raise CaptureUnavailable(e) from e
    if player.audio is None:
        raise CaptureUnavailable(RuntimeError(f"{device} has no audio stream"))
    logger.info(f"Microphone {device} ({format}) opened")
    return LocalMedia(player)


class AiortcPeer:
    def __init__(
        self,
        initiator: bool,
        local_stream: Optional[LocalMedia],
        on_signal: Callable[[Any], Awaitable[None]],
        on_stream: Callable[[MediaStreamTrack], None],
        ice_servers: Optional[List[str]] = None,
    ):
        self.initiator = initiator
        self.on_signal = on_signal
        configuration = None
        if ice_servers:
            configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in ice_servers])
        self.pc = RTCPeerConnection(configuration=configuration)

        if local_stream is not None:
            self.pc.addTrack(local_stream.subscribe())
        else:
            # No microphone: still receive the other side's audio
            self.pc.addTransceiver("audio", direction="recvonly")

        @self.pc.on("track")
        def on_track(track: MediaStreamTrack):
            if track.kind == "audio":
                on_stream(track)

    async def _send_local_description(self):
        description = self.pc.localDescription
        await self.on_signal({"type": description.type, "sdp": description.sdp})

    async def start(self):
        if not self.initiator:
            return
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        await self._send_local_description()

    async def signal(self, payload: Any):
        kind = payload.get("type") if isinstance(payload, dict) else None
        if kind in ("offer", "answer"):
            await self.pc.setRemoteDescription(RTCSessionDescription(sdp=payload["sdp"], type=kind))
            if kind == "offer":
                answer = await self.pc.createAnswer()
                await self.pc.setLocalDescription(answer)
                await self._send_local_description()
        elif kind == "candidate":
            data = payload["candidate"]
            candidate = candidate_from_sdp(data["candidate"].split(":", 1)[1])
            candidate.sdpMid = data.get("sdpMid")
            candidate.sdpMLineIndex = data.get("sdpMLineIndex")
            await self.pc.addIceCandidate(candidate)
        else:
            raise ValueError(f"Unsupported negotiation payload type: {kind!r}")

    async def close(self):
        await self.pc.close()
