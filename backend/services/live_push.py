"""
Push temps réel : registre des connexions SSE ouvertes par utilisateur.

Registre mono-processus, en mémoire. Chaque canal suit la machine à états
OPEN → CLOSED_BY_CLIENT | CLOSED_BY_TIMEOUT | CLOSED_BY_ERROR ; toute
transition terminale déclenche une seule fois le retrait du registre.
"""
import asyncio
import json
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from config import settings

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    OPEN              = "open"
    CLOSED_BY_CLIENT  = "closed_by_client"
    CLOSED_BY_TIMEOUT = "closed_by_timeout"
    CLOSED_BY_ERROR   = "closed_by_error"


class ChannelClosedError(Exception):
    """Envoi sur un canal fermé ou saturé."""


def format_sse(event: str, data: str) -> str:
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


class LiveChannel:
    def __init__(
        self,
        user_id: str,
        on_close: Callable[["LiveChannel"], None],
        timeout_seconds: float,
        max_pending: int = settings.SSE_MAX_PENDING_EVENTS,
    ):
        self.channel_id = f"chn_{uuid.uuid4().hex[:12]}"
        self.user_id = user_id
        self.timeout_seconds = timeout_seconds
        self.state = ChannelState.OPEN
        self._on_close = on_close
        self._queue: "asyncio.Queue[Optional[Tuple[str, str]]]" = asyncio.Queue(maxsize=max_pending)
        self._state_lock = threading.Lock()
        self._idle_timer: Optional[asyncio.TimerHandle] = None
        self._arm_idle_timer()

    def __repr__(self) -> str:
        return f"<LiveChannel {self.channel_id} user={self.user_id} {self.state.value}>"

    def _arm_idle_timer(self) -> None:
        """(Ré)arme l'expiration ; court même si stream() n'est jamais lu."""
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        loop = asyncio.get_running_loop()
        self._idle_timer = loop.call_later(self.timeout_seconds, self.close, ChannelState.CLOSED_BY_TIMEOUT)

    @property
    def is_open(self) -> bool:
        return self.state == ChannelState.OPEN

    def send(self, event: str, data: str) -> None:
        if not self.is_open:
            raise ChannelClosedError(f"{self.channel_id} fermé ({self.state.value})")
        try:
            self._queue.put_nowait((event, data))
        except asyncio.QueueFull:
            self.close(ChannelState.CLOSED_BY_ERROR)
            raise ChannelClosedError(f"{self.channel_id} saturé, client trop lent")

    def close(self, state: ChannelState) -> bool:
        """Transition terminale ; retourne False si le canal était déjà fermé."""
        with self._state_lock:
            if self.state != ChannelState.OPEN:
                return False
            self.state = state
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        try:
            # Réveille stream() s'il attend un événement
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        self._on_close(self)
        return True

    async def stream(self):
        """Générateur de trames SSE consommé par la réponse HTTP."""
        try:
            while self.is_open:
                item = await self._queue.get()
                if item is None or not self.is_open:
                    break
                self._arm_idle_timer()
                yield format_sse(*item)
        except Exception:
            self.close(ChannelState.CLOSED_BY_ERROR)
            raise
        finally:
            # Déconnexion client (annulation / fermeture du générateur)
            self.close(ChannelState.CLOSED_BY_CLIENT)


class LiveConnectionRegistry:
    def __init__(self, timeout_minutes: float = settings.SSE_TIMEOUT_MINUTES):
        self.timeout_seconds = timeout_minutes * 60
        self._channels: Dict[str, Set[LiveChannel]] = {}
        self._lock = threading.Lock()

    def connection_count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._channels.get(user_id, ()))
            return sum(len(chs) for chs in self._channels.values())

    def is_registered(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._channels

    def subscribe(self, user_id: str) -> LiveChannel:
        channel = LiveChannel(user_id, self._on_channel_closed, self.timeout_seconds)
        with self._lock:
            self._channels.setdefault(user_id, set()).add(channel)
        channel.send("connected", "SSE connection established")
        logger.info(f"SSE ouvert pour {user_id} ({channel.channel_id})")
        return channel

    def unsubscribe(self, user_id: str, channel: LiveChannel) -> None:
        with self._lock:
            channels = self._channels.get(user_id)
            if not channels:
                return
            channels.discard(channel)
            if not channels:
                del self._channels[user_id]

    def _on_channel_closed(self, channel: LiveChannel) -> None:
        if channel.state == ChannelState.CLOSED_BY_ERROR:
            logger.warning(f"SSE en erreur pour {channel.user_id} ({channel.channel_id})")
        else:
            logger.info(f"SSE fermé pour {channel.user_id} ({channel.channel_id}) : {channel.state.value}")
        self.unsubscribe(channel.user_id, channel)

    def push(self, user_id: str, event: str, payload: Any) -> int:
        """
        Envoie `payload` (sérialisé JSON) à tous les canaux de l'utilisateur.
        Les canaux en échec sont retirés après la boucle. Retourne le nombre
        de canaux atteints ; 0 canal = no-op silencieux.
        """
        with self._lock:
            channels: List[LiveChannel] = list(self._channels.get(user_id, ()))
        if not channels:
            return 0

        data = json.dumps(payload, default=str)
        dead: List[LiveChannel] = []
        delivered = 0
        for channel in channels:
            try:
                channel.send(event, data)
                delivered += 1
            except ChannelClosedError as e:
                logger.warning(f"Push SSE échoué pour {user_id} : {e}")
                dead.append(channel)

        for channel in dead:
            self.unsubscribe(user_id, channel)
        return delivered

    def close_all(self) -> None:
        with self._lock:
            channels = [ch for chs in self._channels.values() for ch in chs]
        for channel in channels:
            channel.close(ChannelState.CLOSED_BY_CLIENT)
