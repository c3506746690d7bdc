"""
Ticket Guys Backend API
FastAPI application for citation intake, payments and case status notifications.
"""

import logging
import os
import socket
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from app.routers import admin_alerts, cases, payments
from app.services.runtime import get_services

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def _is_usable_lan_ip(ip: str) -> bool:
    """Return True for a LAN address that is neither loopback nor Docker-internal."""
    if ip.startswith("127.") or ip.startswith("172."):
        return False
    # Docker Desktop for Mac resolves host.docker.internal to 192.168.65.x
    if ip.startswith("192.168.65."):
        return False
    return True


def get_local_ip() -> Optional[str]:
    """
    Detect the host machine's local network IP address.

    ``HOST_IP`` wins when set (containers cannot see the host's LAN IP);
    otherwise the outbound interface is found with a UDP connect. Returns
    None when detection fails.
    """
    host_ip = os.getenv("HOST_IP", "").strip()
    if host_ip:
        return host_ip

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            if _is_usable_lan_ip(ip):
                return ip
    except OSError:
        logger.debug("Local IP detection failed")

    return None


def status_monitor_enabled() -> bool:
    return os.getenv("STATUS_MONITOR_ENABLED", "").strip().lower() in ("1", "true", "yes", "on")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Log where the API is reachable and, when STATUS_MONITOR_ENABLED is set,
    run the case status monitor alongside the web app.

    By default the monitor runs as its own process (app.status_monitor_main).
    """
    host_port = os.getenv("HOST_PORT", "8000")
    local_ip = get_local_ip()
    network_line = (
        f"  Network: http://{local_ip}:{host_port}"
        if local_ip
        else "  Network: (unavailable)"
    )
    logger.info(
        "Ticket Guys API running at:\n"
        "  Local:   http://localhost:%s\n"
        "%s",
        host_port,
        network_line,
    )

    monitor = None
    if status_monitor_enabled():
        services = await get_services()
        monitor = services.monitor
        await monitor.start()

    try:
        yield
    finally:
        if monitor is not None:
            await monitor.stop()


app = FastAPI(
    title="Ticket Guys API",
    description="Traffic citation intake, payments and case status notifications",
    version="0.1.0",
    lifespan=lifespan,
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes the local dev server on ports 3000/3001 and the same
    ports on the detected LAN IP. Additional origins come from CORS_ORIGINS
    (comma-separated) and FRONTEND_URL. Duplicates are removed while
    preserving order.
    """
    origins = ["http://localhost:3000", "http://localhost:3001"]

    local_ip = get_local_ip()
    if local_ip:
        origins.append(f"http://{local_ip}:3000")
        origins.append(f"http://{local_ip}:3001")

    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        origins.extend(o.strip() for o in cors_env.split(",") if o.strip())

    frontend_url = os.getenv("FRONTEND_URL", "").strip().rstrip("/")
    if frontend_url:
        origins.append(frontend_url)

    return list(dict.fromkeys(origins))


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cases.router, prefix="/api/cases", tags=["cases"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])
app.include_router(admin_alerts.router, prefix="/api/admin/alerts", tags=["admin"])


@app.get("/")
async def root():
    return {"message": "Ticket Guys API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection with a one-row select on the
    cases table. Returns 503 on failure.
    """
    try:
        services = await get_services()
        await services.store.ping()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error("Database health check failed: %s", exc)
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
