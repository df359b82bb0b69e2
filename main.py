"""
Drone Dispatch - FastAPI Backend
Main server handling drones, deliveries, obstacles, flight scheduling and the
simulation clock
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from drone_simulator import SimulationClock
from errors import DispatchError
from models import (
    DeliveryRequest, DeliveryUpdate, DroneRegistration, DroneUpdate,
    FlightRequest, FlightUpdate, ObstacleRequest,
)
from service import FleetService
from storage import FleetStore
import config

logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI SETUP
# ============================================================================

app = FastAPI(
    title="Drone Dispatch API",
    description="Delivery-to-drone dispatch and flight simulation",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# STATE
# ============================================================================

store = FleetStore(config.DB_PATH)
service = FleetService(store)
clock = SimulationClock(store)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    """Map domain errors onto their HTTP status"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# ============================================================================
# SYSTEM
# ============================================================================

@app.get("/health")
def health_check():
    """System health check"""
    return service.health()

# ============================================================================
# DRONES
# ============================================================================

@app.get("/drones")
def get_all_drones():
    return service.list_drones()


@app.get("/drones/status")
def get_drone_status():
    """Consolidated live drone status for polling clients"""
    return service.drone_status_snapshot()


@app.post("/drones", status_code=201)
def register_drone(registration: DroneRegistration):
    drone = service.create_drone(registration)
    return {"ok": True, "drone": drone}


@app.put("/drones/{drone_id}")
def update_drone(drone_id: str, update: DroneUpdate):
    drone = service.update_drone(drone_id, update)
    return {"ok": True, "drone": drone}


@app.delete("/drones/{drone_id}")
def remove_drone(drone_id: str):
    """Remove a drone; its flights are archived and in-transit deliveries re-queued"""
    removed = service.remove_drone(drone_id)
    return {"ok": True, "removed": removed}

# ============================================================================
# DELIVERIES
# ============================================================================

@app.get("/deliveries")
def get_all_deliveries():
    return service.list_deliveries()


@app.post("/deliveries", status_code=201)
def create_delivery(request: DeliveryRequest):
    delivery = service.create_delivery(request)
    return {"ok": True, "delivery": delivery}


@app.put("/deliveries/{delivery_id}")
def update_delivery(delivery_id: str, update: DeliveryUpdate):
    delivery = service.update_delivery(delivery_id, update)
    return {"ok": True, "delivery": delivery}


@app.delete("/deliveries/{delivery_id}")
def remove_delivery(delivery_id: str):
    removed = service.remove_delivery(delivery_id)
    return {"ok": True, "removed": removed}


@app.post("/deliveries/{delivery_id}/cancel")
def cancel_delivery(delivery_id: str):
    """Cancel a delivery; an active flight is archived and its battery refunded"""
    result = service.cancel_delivery(delivery_id)
    return {"ok": True, **result}


@app.delete("/deliveries-bulk/purge-cancelled")
def purge_cancelled_deliveries():
    removed = service.purge_cancelled_deliveries()
    return {"ok": True, "removed": removed}

# ============================================================================
# FLIGHTS
# ============================================================================

@app.get("/flights")
def get_all_flights():
    return service.list_flights()


@app.post("/flights", status_code=201)
def schedule_flight(request: Optional[FlightRequest] = None):
    """
    Schedule a flight
    Without deliveryId the highest-priority schedulable delivery is picked
    """
    delivery_id = request.delivery_id if request is not None else None
    flight = service.schedule_flight(delivery_id)
    return {"ok": True, "flight": flight}


@app.post("/flights/{flight_id}/advance")
def advance_flight(flight_id: str):
    """Step a flight: scheduled -> in_progress -> completed"""
    result = service.advance_flight(flight_id)
    return {"ok": True, **result}


@app.put("/flights/{flight_id}")
def update_flight(flight_id: str, update: FlightUpdate):
    flight = service.update_flight(flight_id, update)
    return {"ok": True, "flight": flight}


@app.delete("/flights/{flight_id}")
def remove_flight(flight_id: str):
    removed = service.remove_flight(flight_id)
    return {"ok": True, "removed": removed}


@app.get("/flight-history")
def get_flight_history():
    return service.list_flight_history()


@app.delete("/flight-history")
def clear_flight_history():
    removed = service.clear_flight_history()
    return {"ok": True, "removed": removed}

# ============================================================================
# OBSTACLES
# ============================================================================

@app.get("/obstacles")
def get_all_obstacles():
    return service.list_obstacles()


@app.post("/obstacles", status_code=201)
def create_obstacle(request: ObstacleRequest):
    obstacle = service.create_obstacle(request)
    return {"ok": True, "obstacle": obstacle}


@app.delete("/obstacles/{obstacle_id}")
def remove_obstacle(obstacle_id: str):
    removed = service.remove_obstacle(obstacle_id)
    return {"ok": True, "removed": removed}

# ============================================================================
# BACKGROUND TASKS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize system on startup"""
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    logger.info("Drone Dispatch starting (store: %s)", store.path or "memory")
    store.migrate()
    clock.start()
    logger.info("System ready for drone operations.")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await clock.stop()
    logger.info("Drone Dispatch shutting down...")

# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
