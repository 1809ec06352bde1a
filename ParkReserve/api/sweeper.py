import asyncio
import logging
import socket
import uuid

logger = logging.getLogger(__name__)

NO_SHOW_LEASE = "sweep.no_shows"
EXPIRY_LEASE = "sweep.expired"


class ReservationSweeper:
    """
    Periodic housekeeping over the reservation table.

    Each sweep claims a database lease first, so with several app processes
    on one database only one of them sweeps at a time. All transitions are
    status-guarded, running a sweep twice is harmless.
    """

    def __init__(self, manager, leases, clock,
                 no_show_interval: int = 300,
                 expiry_interval: int = 900,
                 lease_seconds: int = 120,
                 owner: str = None):
        self.manager = manager
        self.leases = leases
        self.clock = clock
        self.no_show_interval = no_show_interval
        self.expiry_interval = expiry_interval
        self.lease_seconds = lease_seconds
        self.owner = owner or f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


    def _claim(self, name: str) -> bool:
        claimed = self.leases.claim(name, self.owner, self.clock.now(), self.lease_seconds)
        if not claimed:
            logger.debug("Lease %s is held by another sweeper", name)
        return claimed


    def sweep_no_shows(self) -> dict:
        if not self._claim(NO_SHOW_LEASE):
            return {"skipped": True}
        return {"skipped": False, "no_shows": self.manager.mark_no_shows()}


    def sweep_expired(self) -> dict:
        if not self._claim(EXPIRY_LEASE):
            return {"skipped": True}
        result = {
            "skipped": False,
            "expired": self.manager.expire_stale(),
            "dismissed": self.manager.dismiss_stale_waitlist(),
            "promoted": len(self.manager.promote_waitlist()),
        }
        logger.info("Expiry sweep finished: %s", result)
        return result


    async def _loop(self, sweep, interval: int, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(sweep)
            except Exception:
                # Een mislukte sweep mag de loop niet stoppen
                logger.error("Sweep %s failed", sweep.__name__, exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue


    async def run(self, stop_event: asyncio.Event):
        await asyncio.gather(
            self._loop(self.sweep_no_shows, self.no_show_interval, stop_event),
            self._loop(self.sweep_expired, self.expiry_interval, stop_event),
        )
