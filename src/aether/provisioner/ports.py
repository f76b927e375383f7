"""Ephemeral host port allocation for published service ports."""

import logging
import socket
import threading

from aether.errors import PortAllocationError

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


class PortAllocator:
    """Hands out free TCP ports by asking the OS for ephemeral ones.

    Each port comes from binding a probe listener to port 0 on loopback and
    reading back the assigned number; the listener is closed before the port
    is returned. The reserved set tracks ports handed out by this allocator
    only, not ports held by other processes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reserved: set[int] = set()

    @property
    def reserved(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._reserved)

    def allocate(self, count: int) -> list[int]:
        """Return ``count`` distinct free ports and mark them reserved."""
        allocated: list[int] = []
        with self._lock:
            while len(allocated) < count:
                port = self._probe()
                # The OS may hand back a port this allocator already gave out
                if port in self._reserved:
                    continue
                self._reserved.add(port)
                allocated.append(port)

        logger.debug("Allocated ports: %s", allocated)
        return allocated

    def release(self, ports: list[int]) -> None:
        """Forget ports; unknown ports are ignored."""
        with self._lock:
            self._reserved.difference_update(ports)

    @staticmethod
    def _probe() -> int:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind((LOOPBACK, 0))
                return sock.getsockname()[1]
        except OSError as e:
            raise PortAllocationError(f"Failed to bind: {e}") from e
