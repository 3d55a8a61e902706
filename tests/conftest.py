"""Pytest configuration and shared fixtures for tunnelport tests."""

from __future__ import annotations

import asyncio
import ipaddress
import logging

import pytest

from tunnelport.models import Server
from tunnelport.utils.time import Clock


class ManualClock(Clock):
    """Virtual clock: sleepers wake only when the test advances time."""

    def __init__(self, start: float = 1000.0) -> None:
        self._now = start
        self._sleepers: list[tuple[float, asyncio.Future[None]]] = []
        self.sleep_calls: list[float] = []

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleep_calls.append(seconds)
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (self._now + seconds, future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            self._sleepers.remove(entry)

    @property
    def sleeping(self) -> int:
        """Number of tasks currently blocked in sleep()."""
        return sum(1 for _, future in self._sleepers if not future.done())

    async def settle(self, rounds: int = 50) -> None:
        """Let every runnable task make progress."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, wake due sleepers and let them run."""
        self._now += seconds
        for deadline, future in list(self._sleepers):
            if deadline <= self._now and not future.done():
                future.set_result(None)
        await self.settle()


def pytest_configure(config):
    """Register project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("nat", "marks tests as NAT-PMP port forwarding tests"),
        ("provider", "marks tests as provider endpoint selection tests"),
        ("config", "marks tests as configuration tests"),
        ("cli", "marks tests as CLI tests"),
        ("property", "marks tests as property-based tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Restore the tunnelport logger so caplog sees every record."""
    yield
    tunnelport_logger = logging.getLogger("tunnelport")
    for handler in tunnelport_logger.handlers[:]:
        handler.close()
        tunnelport_logger.removeHandler(handler)
    tunnelport_logger.propagate = True
    tunnelport_logger.setLevel(logging.NOTSET)


@pytest.fixture
def manual_clock() -> ManualClock:
    """Virtual clock driven by the test."""
    return ManualClock()


@pytest.fixture
def gateway() -> ipaddress.IPv4Address:
    """VPN gateway address."""
    return ipaddress.IPv4Address("10.2.0.1")


@pytest.fixture
def servers() -> list[Server]:
    """Small catalog spanning two providers' worth of attributes."""
    return [
        Server(
            country="Switzerland",
            city="Zurich",
            hostname="ch-01.example.net",
            server_name="CH#1",
            port_forward=True,
            owned=True,
            ips=("185.159.157.1", "185.159.157.2"),
        ),
        Server(
            country="Switzerland",
            city="Geneva",
            hostname="ch-02.example.net",
            server_name="CH#2",
            free=True,
            ips=("185.159.158.1",),
        ),
        Server(
            country="Netherlands",
            city="Amsterdam",
            hostname="nl-01.example.net",
            server_name="NL#1",
            stream=True,
            port_forward=True,
            tcp=False,
            ips=("190.2.131.1", "190.2.131.2", "2a0d:5600:1::1"),
        ),
        Server(
            vpn="wireguard",
            country="Netherlands",
            city="Amsterdam",
            hostname="nl-wg-01.example.net",
            server_name="NL#WG1",
            ips=("190.2.132.1",),
        ),
    ]
