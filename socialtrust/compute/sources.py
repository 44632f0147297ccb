"""
SocialTrust — External Collaborators

The graph engine and the relay transport live outside this package. These
protocols are what the scoring core needs from them; the Null* versions
stand in when a capability is not wired up and report "unknown".
"""
from typing import Any, Dict, Optional, Protocol

RELAY_LIST_KIND = 10002


class DistanceSource(Protocol):
    async def distance(self, source: str, target: str) -> Optional[int]:
        """Hop distance, or None when target is unreachable."""
        ...


class ProfileSource(Protocol):
    async def fetch_profile(self, identity: str) -> Optional[Dict[str, Any]]:
        """Parsed profile document (name, nip05, lud16, ...) or None."""
        ...


class EventSource(Protocol):
    async def latest_event(self, identity: str, kind: int) -> Optional[Dict[str, Any]]:
        ...


class FollowGraph(Protocol):
    async def is_following(self, follower: str, followed: str) -> Optional[bool]:
        """None means the graph cannot tell."""
        ...


class NullDistanceSource:
    async def distance(self, source: str, target: str) -> Optional[int]:
        return None


class NullProfileSource:
    async def fetch_profile(self, identity: str) -> Optional[Dict[str, Any]]:
        return None


class NullEventSource:
    async def latest_event(self, identity: str, kind: int) -> Optional[Dict[str, Any]]:
        return None


class NullFollowGraph:
    async def is_following(self, follower: str, followed: str) -> Optional[bool]:
        return None
