"""
Drone Flight Simulator
Recurring clock that moves in-progress flights along their straight route
and trickle-charges idle drones
"""

import asyncio
import contextlib
import logging
import time
from typing import Optional

from dispatcher import estimated_duration_sec
from errors import IntegrityError
from flight_state import FlightStateMachine
from models import DroneState, Flight, FlightStatus, TickReport
from storage import FleetStore
import config
import geometry

logger = logging.getLogger(__name__)


class SimulationClock:
    """Advances simulated flight state on a fixed period"""

    def __init__(self, store: FleetStore,
                 period_s: float = config.SIMULATION_TICK_SECONDS,
                 recharge_step: float = config.SIMULATION_RECHARGE_STEP,
                 speed_kmh: float = config.DRONE_CRUISE_SPEED_KMH,
                 auto_complete: bool = config.AUTO_COMPLETE_FLIGHTS,
                 state_machine: Optional[FlightStateMachine] = None):
        self.store = store
        self.period_s = period_s
        self.recharge_step = recharge_step
        self.speed_kmh = speed_kmh
        self.auto_complete = auto_complete
        self.state_machine = state_machine or FlightStateMachine()
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def progress_step(self, flight: Flight) -> float:
        """Fraction of the route covered in one period"""
        duration = flight.estimated_duration_sec
        if duration is None:
            duration = estimated_duration_sec(flight.distance_km, self.speed_kmh)
        if duration <= 0:
            return 1.0
        return self.period_s / duration

    def tick(self) -> TickReport:
        """
        Run one clock step as a single store transaction

        Idle drones below full charge gain recharge_step (cap 100). Each
        in-progress flight gains progress and its drone is placed on the
        pickup -> dropoff line at that fraction. Flights only complete here
        when auto_complete is enabled. A flight with a missing drone or
        delivery is skipped; the rest of the tick still applies.

        Returns:
            Ids of flights advanced/completed/skipped and drones recharged
        """
        report = TickReport()

        with self.store.transaction() as registry:
            for drone in registry.drones:
                if drone.state == DroneState.IDLE and drone.battery_percent < config.MAX_BATTERY_PERCENT:
                    registry.credit_battery(drone, self.recharge_step)
                    report.recharged.append(drone.id)

            in_progress = [f for f in registry.flights if f.status == FlightStatus.IN_PROGRESS]
            for flight in in_progress:
                try:
                    drone, delivery = registry.related_entities(flight)
                except IntegrityError:
                    report.skipped.append(flight.id)
                    continue

                flight.progress = min(1.0, flight.progress + self.progress_step(flight))
                drone.current_lat, drone.current_lon = geometry.interpolate(
                    delivery.pickup, delivery.dropoff, flight.progress
                )
                report.advanced.append(flight.id)

                if self.auto_complete and flight.progress >= 1.0:
                    self.state_machine.advance(registry, flight.id)
                    report.completed.append(flight.id)

        if report.completed:
            logger.info("Auto-completed flights: %s", ", ".join(report.completed))
        return report

    async def run(self):
        """Main clock loop - ticks until stopped, surviving failed ticks"""
        self.running = True
        logger.info("Starting simulation clock (period %.1fs, auto-complete %s)",
                    self.period_s, self.auto_complete)

        while self.running:
            loop_start = time.monotonic()

            try:
                report = await asyncio.to_thread(self.tick)
                logger.debug("Tick: %d advanced, %d recharged",
                             len(report.advanced), len(report.recharged))
            except Exception:
                logger.exception("Simulation tick failed")

            # Maintain tick rate
            elapsed = time.monotonic() - loop_start
            await asyncio.sleep(max(0.0, self.period_s - elapsed))

    def start(self) -> asyncio.Task:
        """Schedule the clock loop on the running event loop"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Stop the clock and wait for the loop to exit"""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Simulation clock stopped")
