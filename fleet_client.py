"""
Fleet API Client
Async client for the dispatch API plus a demo scenario that seeds a fleet,
queues deliveries and flies them through a running server
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

import config

logger = logging.getLogger(__name__)


class FleetApiError(Exception):
    """Non-2xx response from the dispatch API"""

    def __init__(self, status: int, payload: Dict[str, Any]):
        super().__init__(payload.get("error") or f"HTTP {status}")
        self.status = status
        self.code = payload.get("code")
        self.payload = payload


class FleetClient:
    """Thin async wrapper over the dispatch HTTP API"""

    def __init__(self, api_url: str, timeout_s: float = 5.0):
        self.api_url = api_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "FleetClient":
        self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc_info):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        if self._session is None:
            raise RuntimeError("FleetClient must be used as an async context manager")

        async with self._session.request(method, f"{self.api_url}{path}", json=payload) as response:
            body = await response.json(content_type=None)
            if response.status >= 400:
                raise FleetApiError(response.status, body if isinstance(body, dict) else {})
            return body

    # drones
    async def create_drone(self, model: str, max_weight_kg: float, max_range_km: float,
                           battery_percent: Optional[float] = None,
                           drone_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {"model": model, "maxWeightKg": max_weight_kg, "maxRangeKm": max_range_km}
        if battery_percent is not None:
            payload["batteryPercent"] = battery_percent
        if drone_id is not None:
            payload["id"] = drone_id
        body = await self._request("POST", "/drones", payload)
        return body["drone"]

    async def drone_status(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/drones/status")

    # deliveries
    async def create_delivery(self, weight_kg: float, pickup: Dict[str, float],
                              dropoff: Dict[str, float],
                              priority: Optional[str] = None) -> Dict[str, Any]:
        payload = {"weightKg": weight_kg, "pickup": pickup, "dropoff": dropoff}
        if priority is not None:
            payload["priority"] = priority
        body = await self._request("POST", "/deliveries", payload)
        return body["delivery"]

    async def cancel_delivery(self, delivery_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/deliveries/{delivery_id}/cancel")

    # flights
    async def schedule_flight(self, delivery_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {"deliveryId": delivery_id} if delivery_id else {}
        body = await self._request("POST", "/flights", payload)
        return body["flight"]

    async def advance_flight(self, flight_id: str) -> Dict[str, Any]:
        body = await self._request("POST", f"/flights/{flight_id}/advance")
        return body["flight"]

    async def flights(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/flights")

    # obstacles
    async def create_obstacle(self, obstacle_id: str, lat: float, lon: float,
                              radius_km: float) -> Dict[str, Any]:
        payload = {"id": obstacle_id, "type": "circle", "lat": lat, "lon": lon, "radiusKm": radius_km}
        body = await self._request("POST", "/obstacles", payload)
        return body["obstacle"]


async def run_demo(api_url: str) -> Dict[str, int]:
    """
    Seed a small fleet and drain the delivery queue

    Returns:
        Counts of scheduled, completed and rejected schedule attempts
    """
    stats = {"scheduled": 0, "completed": 0, "rejected": 0}

    async with FleetClient(api_url) as client:
        await client.create_drone("Courier Q2", max_weight_kg=5, max_range_km=20)
        await client.create_drone("Lifter H8", max_weight_kg=12, max_range_km=60)

        origin = {"lat": -22.9068, "lon": -43.1729}
        for priority, (dlat, dlon) in (("low", (0.01, 0.01)),
                                       ("high", (-0.02, 0.015)),
                                       ("normal", (0.005, -0.03))):
            dropoff = {"lat": origin["lat"] + dlat, "lon": origin["lon"] + dlon}
            await client.create_delivery(3.0, origin, dropoff, priority=priority)

        while True:
            try:
                flight = await client.schedule_flight()
            except FleetApiError as e:
                if e.code == "no_schedulable_delivery":
                    break
                logger.warning("Schedule rejected: %s", e)
                stats["rejected"] += 1
                break

            stats["scheduled"] += 1
            logger.info("✓ %s: delivery %s on %s",
                        flight["displayId"], flight["deliveryId"], flight["droneId"])

            await client.advance_flight(flight["id"])
            done = await client.advance_flight(flight["id"])
            if done["status"] == "completed":
                stats["completed"] += 1

    return stats


async def main():
    """Main entry point"""
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    api_url = f"http://{config.API_HOST}:{config.API_PORT}"
    logger.info("Running dispatch demo against %s", api_url)
    stats = await run_demo(api_url)
    logger.info("Demo finished: %s", stats)


if __name__ == "__main__":
    asyncio.run(main())
