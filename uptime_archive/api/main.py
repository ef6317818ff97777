from __future__ import annotations

from fastapi import FastAPI

from uptime_archive.api.routers import health, status

app = FastAPI(title="Uptime Archive API")

app.include_router(status.router)
app.include_router(health.router)
