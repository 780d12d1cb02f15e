"""
Control endpoints for the location simulator.
"""

import logging

from fastapi import APIRouter, Depends, Request

from dependencies import get_simulator
from middleware.rate_limiter import api_rate_limit
from simulator.service import LocationSimulator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/simulator", tags=["simulator"])


@router.post("/start")
@api_rate_limit()
async def start_simulator(request: Request, simulator: LocationSimulator = Depends(get_simulator)):
    started = await simulator.start()
    return {
        "success": True,
        "message": "Simulator started" if started else "Simulator already running",
        "data": simulator.status(),
    }


@router.post("/stop")
@api_rate_limit()
async def stop_simulator(request: Request, simulator: LocationSimulator = Depends(get_simulator)):
    stopped = await simulator.stop()
    return {
        "success": True,
        "message": "Simulator stopped" if stopped else "Simulator was not running",
        "data": simulator.status(),
    }


@router.post("/reset")
@api_rate_limit()
async def reset_bus_locations(request: Request, simulator: LocationSimulator = Depends(get_simulator)):
    """Move every active bus back to the village centre."""
    count = await simulator.reset_locations()
    return {
        "success": True,
        "message": f"Reset {count} buses to the village center",
        "data": {"buses_reset": count},
    }


@router.get("/status")
async def simulator_status(simulator: LocationSimulator = Depends(get_simulator)):
    return {"success": True, "data": simulator.status()}
