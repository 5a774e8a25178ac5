"""Connection registry: who is currently joined, in join order.

A passive keyed store. It has no outbound behaviour and no locking; it is
owned and mutated only by the EventBroadcaster, whose single worker
serialises every access.
"""
from typing import Dict, List, Optional


class ConnectionRegistry:
    """Maps connection ID to display name, preserving insertion order.

    Re-registering an existing connection renames it in place, so the
    roster order only changes when a member leaves.
    """

    def __init__(self) -> None:
        # connection_id -> display name (dicts keep insertion order)
        self._names: Dict[str, str] = {}

    def register(self, connection_id: str, display_name: str) -> None:
        """Insert or overwrite the entry for a connection.

        Args:
            connection_id: The connection joining the chat.
            display_name: Chosen display name. Not checked for uniqueness.

        Raises:
            ValueError: If the display name is empty or whitespace only.
        """
        if not display_name or not display_name.strip():
            raise ValueError("display_name must not be blank")
        self._names[connection_id] = display_name

    def unregister(self, connection_id: str) -> Optional[str]:
        """Remove a connection's entry.

        Returns:
            The removed display name, or None if the connection never joined.
        """
        return self._names.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[str]:
        return self._names.get(connection_id)

    def snapshot(self) -> List[str]:
        """Current roster: display names in join order, as a new list."""
        return list(self._names.values())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._names

    def __len__(self) -> int:
        return len(self._names)
