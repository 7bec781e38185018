"""
Checkpoint Store Contract
Narrow get/set/delete/list-by-prefix interface over a durable key-value medium
"""

from typing import Any, List, Optional, Protocol, runtime_checkable


ANONYMOUS_ACTOR = "anonymous"


@runtime_checkable
class CheckpointStore(Protocol):
    """
    Durable key-value medium holding JSON-serializable values.

    All operations are synchronous. set fully overwrites and may raise
    StorageQuotaExceeded; medium errors surface as StorageFailure.
    """

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def list_keys_with_prefix(self, prefix: str) -> List[str]:
        ...


def escape_actor_id(actor_id: Optional[str]) -> str:
    """
    Make an actor id safe as a single key segment.

    '.' separates key segments, so it is percent-escaped (together with '%'
    itself) to keep one actor's prefix from matching another's keys.
    """
    actor = actor_id or ANONYMOUS_ACTOR
    return actor.replace("%", "%25").replace(".", "%2E")


def actor_prefix(namespace: str, actor_id: Optional[str]) -> str:
    """Prefix covering every key of one actor in one namespace."""
    return f"{namespace}.{escape_actor_id(actor_id)}."


def build_key(namespace: str, actor_id: Optional[str], item_id: str) -> str:
    """
    Build a storage key: <namespace>.<actor_id>.<id>

    Args:
        namespace: Separates request-queue, session and dead-letter entries
        actor_id: Owning user/session; empty maps to "anonymous"
        item_id: Operation or session id (may itself contain dots)

    Returns:
        Storage key string
    """
    if not item_id:
        raise ValueError("item_id must not be empty")
    return f"{actor_prefix(namespace, actor_id)}{item_id}"
