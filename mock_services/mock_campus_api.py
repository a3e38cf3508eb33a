"""
mock_campus_api.py — Combined Mock CampusBot API

Mounts the mock Catalog/Order, Session and Telemetry routes under `/api`, the
default base URL of the client (`http://localhost:3000/api`), and runs the
fleet simulation while the server is up.

Port:
    Default: 3000 (HTTP)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from mock_services.mock_catalog_service import CampusStore, build_router as build_catalog_router
from mock_services.mock_telemetry_service import FleetSimulator, build_router as build_telemetry_router

logging.basicConfig(level=logging.INFO)


def create_app(store: Optional[CampusStore] = None, simulator: Optional[FleetSimulator] = None,
               simulate: bool = True) -> FastAPI:
    """
    Builds the mock API.

    Args:
        store (CampusStore, optional): Backend state; a freshly seeded one when omitted.
        simulator (FleetSimulator, optional): Fleet model; a new one when omitted.
        simulate (bool): Tick the fleet in the background while the app runs.
    """
    store = store or CampusStore()
    simulator = simulator or FleetSimulator()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(simulator.run()) if simulate else None
        yield
        if task is not None:
            task.cancel()
            await asyncio.wait([task])

    app = FastAPI(title="CampusBot Mock API", lifespan=lifespan)
    app.state.store = store
    app.state.simulator = simulator

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.get("/api/health")
    def health_check():
        return {"status": "ok"}

    app.include_router(build_catalog_router(store), prefix="/api")
    app.include_router(build_telemetry_router(simulator), prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
