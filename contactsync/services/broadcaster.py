# contactsync/services/broadcaster.py
"""
Live progress broadcasting over WebSocket connections.

Clients subscribe to a location (and optionally a job) when they connect.
Delivery is fire-and-forget: nothing is replayed to late subscribers, who
read the Job Store instead.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from contactsync.services.uploads.events import JobProgressEvent, PROGRESS_EVENT_NAME

logger = logging.getLogger("contactsync.broadcaster")


class Subscriber(Protocol):
    """Anything that can receive JSON, e.g. starlette's WebSocket."""

    async def send_json(self, data: Any) -> None:
        ...


def location_room(location_id: str) -> str:
    return f"location-{location_id}"


def job_room(job_id: Any) -> str:
    return f"job-{job_id}"


class ProgressBroadcaster:
    """
    Room-based fan-out of progress events to connected subscribers.

    Rooms are keyed by location and by job; subscribers that fail to
    receive are dropped.
    """

    def __init__(self):
        """Initialize the broadcaster."""
        self._rooms: Dict[str, Set[Subscriber]] = {}
        self._memberships: Dict[Subscriber, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self,
        subscriber: Subscriber,
        location_id: Optional[str] = None,
        job_id: Optional[Any] = None,
    ) -> Set[str]:
        """
        Register a connection for a location and/or job.

        Args:
            subscriber: Connection to deliver events to
            location_id: Location to follow
            job_id: Job to follow

        Returns:
            Set[str]: Rooms joined
        """
        rooms = set()
        if location_id:
            rooms.add(location_room(location_id))
        if job_id is not None and job_id != "":
            rooms.add(job_room(job_id))

        async with self._lock:
            for room in rooms:
                self._rooms.setdefault(room, set()).add(subscriber)
            self._memberships.setdefault(subscriber, set()).update(rooms)

        for room in rooms:
            logger.info(f"Client subscribed to {room}")
        return rooms

    async def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a connection from every room it joined."""
        async with self._lock:
            rooms = self._memberships.pop(subscriber, set())
            for room in rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(subscriber)
                if not members:
                    del self._rooms[room]

        logger.info("Client disconnected")

    async def emit(
        self,
        location_id: str,
        event: JobProgressEvent,
        job_id: Optional[Any] = None,
    ) -> int:
        """
        Deliver an event to the location's (and job's) current subscribers.

        Args:
            location_id: Owning location
            event: Progress event
            job_id: Optional job id for job-scoped subscribers

        Returns:
            int: Number of subscribers reached
        """
        rooms = [location_room(location_id)]
        if job_id is not None:
            rooms.append(job_room(job_id))

        async with self._lock:
            targets: Set[Subscriber] = set()
            for room in rooms:
                targets.update(self._rooms.get(room, set()))

        if not targets:
            logger.debug(f"No subscribers for {rooms}")
            return 0

        message = {"event": PROGRESS_EVENT_NAME, "data": event}
        delivered = 0
        stale = []

        for subscriber in targets:
            try:
                await subscriber.send_json(message)
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Dropping subscriber after failed delivery: {e}")
                stale.append(subscriber)

        for subscriber in stale:
            await self.disconnect(subscriber)

        return delivered

    def get_subscriber_count(self, location_id: Optional[str] = None) -> int:
        """
        Get the number of subscribers.

        Args:
            location_id: Optional location to count subscribers for

        Returns:
            int: Number of subscribers
        """
        if location_id:
            return len(self._rooms.get(location_room(location_id), set()))
        return len(self._memberships)


# Singleton instance
_broadcaster = ProgressBroadcaster()


def get_broadcaster() -> ProgressBroadcaster:
    """Get the singleton progress broadcaster."""
    return _broadcaster
