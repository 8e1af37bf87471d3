"""Unit tests for the port allocator."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from provisioner.infra.error_handler import PortsExhaustedError
from provisioner.services.port_allocator import PortAllocator


class TestPortAllocator:
    """Test lowest-free allocation, release and exhaustion."""

    def test_allocates_lowest_free_port(self):
        """Ports are handed out in ascending order."""
        allocator = PortAllocator(30000, 30004)
        assert allocator.allocate_port() == 30000
        assert allocator.allocate_port() == 30001
        assert allocator.allocate_port() == 30002

    def test_released_port_is_reused_first(self):
        """A released port below the high-water mark is the next one allocated."""
        allocator = PortAllocator(30000, 30004)
        for _ in range(3):
            allocator.allocate_port()

        allocator.release_port(30001)

        assert allocator.allocate_port() == 30001
        assert allocator.allocate_port() == 30003

    def test_exhaustion_then_release(self):
        """A full range raises until a port is released."""
        allocator = PortAllocator(30000, 30001)
        allocator.allocate_port()
        allocator.allocate_port()

        with pytest.raises(PortsExhaustedError) as exc_info:
            allocator.allocate_port()
        assert exc_info.value.start_port == 30000
        assert exc_info.value.end_port == 30001
        assert exc_info.value.retryable is False

        allocator.release_port(30000)
        assert allocator.allocate_port() == 30000

    def test_release_is_idempotent(self):
        allocator = PortAllocator(30000, 30004)
        port = allocator.allocate_port()

        allocator.release_port(port)
        allocator.release_port(port)
        allocator.release_port(39999)

        assert allocator.available == 5
        assert allocator.is_allocated(port) is False

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            PortAllocator(30010, 30000)

    def test_single_port_range(self):
        allocator = PortAllocator(30000, 30000)
        assert allocator.capacity == 1
        assert allocator.allocate_port() == 30000
        with pytest.raises(PortsExhaustedError):
            allocator.allocate_port()

    def test_capacity_and_available(self):
        allocator = PortAllocator(30000, 30009)
        assert allocator.capacity == 10
        allocator.allocate_port()
        allocator.allocate_port()
        assert allocator.available == 8
        assert allocator.allocated_ports() == [30000, 30001]


class TestLoadAllocatedPorts:
    """Test seeding occupancy from the persisted ledger."""

    def test_loaded_ports_are_skipped(self):
        """Ports recorded in the ledger are never handed out again."""
        source = MagicMock()
        source.list_allocated_ports.return_value = [30000, 30002]
        allocator = PortAllocator(30000, 30004)

        allocator.load_allocated_ports(source)

        assert allocator.allocate_port() == 30001
        assert allocator.allocate_port() == 30003

    def test_out_of_range_ports_are_ignored(self):
        source = MagicMock()
        source.list_allocated_ports.return_value = [29999, 30001, 31000]
        allocator = PortAllocator(30000, 30004)

        allocator.load_allocated_ports(source)

        assert allocator.allocated_ports() == [30001]

    def test_source_failure_propagates(self):
        """A failing ledger leaves the allocator unchanged and raises."""
        source = MagicMock()
        source.list_allocated_ports.side_effect = RuntimeError("database down")
        allocator = PortAllocator(30000, 30004)

        with pytest.raises(RuntimeError):
            allocator.load_allocated_ports(source)
        assert allocator.allocated_ports() == []

    def test_load_from_store(self, store, make_tenant):
        """Works against the real tenant store ledger."""
        make_tenant("alice")
        store.record_port_allocation(30003, "alice")
        allocator = PortAllocator(30000, 30004)

        allocator.load_allocated_ports(store)

        assert allocator.is_allocated(30003)


class TestConcurrentAllocation:
    """Test that concurrent callers never receive the same port."""

    def test_fifty_threads_fifty_ports(self):
        """50 concurrent allocations against a 50-port range yield 50 distinct ports."""
        allocator = PortAllocator(30000, 30049)
        results = []
        errors = []
        results_lock = threading.Lock()
        barrier = threading.Barrier(50)

        def worker():
            barrier.wait()
            try:
                port = allocator.allocate_port()
            except Exception as e:
                errors.append(e)
                return
            with results_lock:
                results.append(port)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 50
        assert len(set(results)) == 50
        assert sorted(results) == list(range(30000, 30050))
        assert allocator.available == 0

    def test_oversubscribed_threads(self):
        """Callers beyond capacity get PortsExhaustedError, never a duplicate."""
        allocator = PortAllocator(30000, 30009)
        results = []
        exhausted = []
        lock = threading.Lock()

        def worker():
            try:
                port = allocator.allocate_port()
            except PortsExhaustedError:
                with lock:
                    exhausted.append(1)
                return
            with lock:
                results.append(port)

        threads = [threading.Thread(target=worker) for _ in range(25)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 10
        assert len(set(results)) == 10
        assert len(exhausted) == 15

    @pytest.mark.asyncio
    async def test_fifty_tasks_in_worker_threads(self):
        """Allocation from asyncio tasks running in the default executor."""
        allocator = PortAllocator(30000, 30049)

        ports = await asyncio.gather(*[
            asyncio.to_thread(allocator.allocate_port) for _ in range(50)
        ])

        assert len(set(ports)) == 50
