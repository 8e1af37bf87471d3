"""Lowest-free-port allocator for tenant containers."""

import logging
import threading
from typing import List, Set

from provisioner.infra.error_handler import PortsExhaustedError
from provisioner.infra.metrics import ports_allocated

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    In-memory occupancy of the port range ``[start_port, end_port]``.

    The persisted ledger is the source of truth; this set is a cache that is
    rebuilt with ``load_allocated_ports`` before the first allocation. The
    lock is held only for the duration of a single call.
    """

    def __init__(self, start_port: int, end_port: int):
        if end_port < start_port:
            raise ValueError(f"invalid port range {start_port}-{end_port}")
        self.start_port = start_port
        self.end_port = end_port
        self._allocated: Set[int] = set()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self.end_port - self.start_port + 1

    @property
    def available(self) -> int:
        with self._lock:
            return self.capacity - len(self._allocated)

    def load_allocated_ports(self, source) -> None:
        """
        Seed occupancy from ``source.list_allocated_ports()``.

        Raises whatever the source raises; the allocator is left unchanged.
        """
        ports = source.list_allocated_ports()
        with self._lock:
            for port in ports:
                if self.start_port <= port <= self.end_port:
                    self._allocated.add(port)
                else:
                    logger.warning(
                        "Ignoring ledger port outside configured range",
                        extra={"port": port, "start_port": self.start_port, "end_port": self.end_port},
                    )
            ports_allocated.set(len(self._allocated))
            count = len(self._allocated)
        logger.info("Loaded allocated ports", extra={"count": count})

    def allocate_port(self) -> int:
        """
        Reserve and return the lowest free port.

        Raises:
            PortsExhaustedError: If every port in range is taken
        """
        with self._lock:
            for port in range(self.start_port, self.end_port + 1):
                if port not in self._allocated:
                    self._allocated.add(port)
                    ports_allocated.set(len(self._allocated))
                    return port
        raise PortsExhaustedError(self.start_port, self.end_port)

    def release_port(self, port: int) -> None:
        """Free a port. Releasing a free port is a no-op."""
        with self._lock:
            self._allocated.discard(port)
            ports_allocated.set(len(self._allocated))

    def is_allocated(self, port: int) -> bool:
        with self._lock:
            return port in self._allocated

    def allocated_ports(self) -> List[int]:
        with self._lock:
            return sorted(self._allocated)
