"""Forwarded port state and the renewal loop keeping it alive."""

from __future__ import annotations

import asyncio
import inspect
import ipaddress
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from tunnelport.models import TransportProtocol
from tunnelport.nat.natpmp import (
    NATPMPClient,
    NATPMPPortMapping,
    gateway_rebooted,
    validate_gateway,
)
from tunnelport.nat.negotiator import ANY_PORT, DEFAULT_LIFETIME, check_lifetime
from tunnelport.utils.tasks import PeriodicTask, TaskState
from tunnelport.utils.time import Clock

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 45.0  # seconds
MIN_REFRESH_INTERVAL = 1.0  # seconds

# Called with (old_port, new_port) whenever the gateway reassigns the port
PortChangeCallback = Callable[[int, int], Awaitable[None] | None]


@dataclass
class ForwardedPortState:
    """Forwarded port held for one tunnel session."""

    port: int
    expires_at: float | None = None
    epoch: int | None = None
    renewals: int = 0


class PortForwardKeeper:
    """Renews the UDP and TCP mappings of a forwarded port until stopped.

    Each tick re-requests both mappings, suggesting the held port as the
    external port. Lifetime changes are logged. Port changes are logged,
    stored and reported through ``on_port_change``. A failed exchange ends
    the loop with the ``ProtocolError``; a stop request ends it with
    ``TaskState.STOPPED`` without a final renewal.
    """

    def __init__(
        self,
        port: int,
        gateway: ipaddress.IPv4Address | str,
        *,
        client: NATPMPClient | None = None,
        lifetime: int = DEFAULT_LIFETIME,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        clock: Clock | None = None,
        stop_event: asyncio.Event | None = None,
        on_port_change: PortChangeCallback | None = None,
        grants: Iterable[NATPMPPortMapping] = (),
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize keeper.

        Args:
            port: External port obtained by the negotiation
            gateway: Gateway address
            client: NAT-PMP client (a default client is created if None)
            lifetime: Requested mapping lifetime in seconds
            refresh_interval: Seconds between renewals, shorter than lifetime
            clock: Clock driving the renewal cadence
            stop_event: Event that stops the loop once set
            on_port_change: Callback notified when the gateway moves the port
            grants: Mappings obtained by the negotiation, used to schedule
                the first renewal before that lease runs out
            log: Logger receiving discrepancy reports

        """
        if refresh_interval >= lifetime:
            msg = (
                f"refresh interval {refresh_interval}s must be shorter "
                f"than lifetime {lifetime}s"
            )
            raise ValueError(msg)
        self.gateway = validate_gateway(gateway)
        self.client = client or NATPMPClient()
        self.lifetime = lifetime
        self.refresh_interval = refresh_interval
        self.clock = clock or Clock()
        self.on_port_change = on_port_change
        self.logger = log or logger
        self.state = ForwardedPortState(port=port)
        self._task = PeriodicTask(
            self.renew,
            refresh_interval,
            clock=self.clock,
            stop_event=stop_event,
            name="port forward keeper",
        )
        self._seed(list(grants))

    @property
    def port(self) -> int:
        """Currently forwarded external port."""
        return self.state.port

    @property
    def status(self) -> TaskState:
        """Loop state: waiting, running (renewing) or stopped."""
        return self._task.state

    @property
    def expires_in(self) -> float | None:
        """Seconds until the shortest granted lease runs out, if renewed yet."""
        if self.state.expires_at is None:
            return None
        return self.clock.remaining(self.state.expires_at)

    @property
    def interval(self) -> float:
        """Seconds until the next renewal once the current wait starts."""
        return self._task.interval

    def stop(self) -> None:
        """Stop the renewal loop."""
        self._task.stop()

    async def run(self) -> TaskState:
        """Renew the mappings until stopped.

        Returns:
            TaskState.STOPPED once stopped

        Raises:
            ProtocolError: If a renewal exchange fails

        """
        self.logger.debug(
            "keeping port %d forwarded through %s every %gs",
            self.state.port,
            self.gateway,
            self.refresh_interval,
        )
        return await self._task.run()

    async def renew(self) -> None:
        """Run one renewal of both mappings."""
        lifetimes, rebooted = await self._renew_mappings()
        if rebooted:
            self.logger.warning(
                "gateway %s restarted, re-creating port mappings", self.gateway
            )
            lifetimes, _ = await self._renew_mappings()

        shortest = min(lifetimes)
        self.state.expires_at = self.clock.deadline(shortest)
        self.state.renewals += 1
        self._adjust_interval(shortest)

    def _seed(self, grants: list[NATPMPPortMapping]) -> None:
        """Start from the lease and epoch the negotiation obtained."""
        if not grants:
            return
        self.state.epoch = grants[-1].epoch
        shortest = min(grant.lifetime for grant in grants)
        self.state.expires_at = self.clock.deadline(shortest)
        self._adjust_interval(shortest)

    async def _renew_mappings(self) -> tuple[list[int], bool]:
        """Request both mappings once.

        Returns:
            Tuple of (assigned lifetimes, gateway restart detected)

        """
        lifetimes: list[int] = []
        rebooted = False
        for protocol in (TransportProtocol.UDP, TransportProtocol.TCP):
            grant = await self.client.add_port_mapping(
                self.gateway, protocol, ANY_PORT, self.state.port, self.lifetime
            )
            check_lifetime(self.logger, protocol, self.lifetime, grant.lifetime)
            lifetimes.append(grant.lifetime)

            if gateway_rebooted(self.state.epoch, grant.epoch):
                rebooted = True
            self.state.epoch = grant.epoch

            if grant.external_port != self.state.port:
                await self._change_port(grant.external_port)
        return lifetimes, rebooted

    async def _change_port(self, new_port: int) -> None:
        old_port = self.state.port
        self.logger.warning(
            "external port assigned %d changed to %d", old_port, new_port
        )
        self.state.port = new_port
        if self.on_port_change is not None:
            result = self.on_port_change(old_port, new_port)
            if inspect.isawaitable(result):
                await result

    def _adjust_interval(self, shortest_lifetime: int) -> None:
        """Renew at half a lease shorter than the configured cadence."""
        if shortest_lifetime <= self.refresh_interval:
            interval = max(shortest_lifetime / 2, MIN_REFRESH_INTERVAL)
        else:
            interval = self.refresh_interval
        if interval != self._task.interval:
            self.logger.info("renewing port mappings every %gs", interval)
            self._task.interval = interval
