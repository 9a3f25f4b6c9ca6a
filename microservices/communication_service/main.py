"""
Communication Service Main Application

FastAPI application for outbound client communication: approval-gated
broadcasts, promotional offers and payment-reminder escalation.
Port: 8260
"""

import logging
import os
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from core.config_manager import ConfigManager
from core.consul_registry import ConsulRegistry
from core.logging_setup import setup_logging

from .factory import CommunicationServiceFactory
from .models import (
    ApproveRequest,
    BroadcastCreateRequest,
    BroadcastListResponse,
    BroadcastResponse,
    BroadcastStats,
    BroadcastStatsResponse,
    BroadcastStatus,
    BroadcastType,
    BroadcastUpdateRequest,
    Channel,
    DeliveryOutcome,
    EligibleClientsRequest,
    EligibleClientsResponse,
    HealthResponse,
    LivenessResponse,
    OfferCreateRequest,
    OfferListResponse,
    OfferType,
    OfferUpdateRequest,
    OfferView,
    PendingApprovalItem,
    ProductType,
    ReadinessResponse,
    RejectRequest,
    ReminderLedgerResponse,
    ReminderStats,
    RevenueRequest,
    ScanReport,
    ScheduleRequest,
    SchedulerStatus,
    StatusTransition,
)
from .protocols import (
    BroadcastNotFoundError,
    CommunicationServiceError,
    CommunicationValidationError,
    InvalidTransitionError,
    OfferNotFoundError,
    SchedulerFault,
)
from .routes_registry import SERVICE_METADATA, get_routes_for_consul

logger = logging.getLogger(__name__)

# Service configuration
SERVICE_NAME = "communication_service"
SERVICE_VERSION = "1.0.0"

# Track startup time for uptime calculation
startup_time = time.time()

# Global factory instance
factory: Optional[CommunicationServiceFactory] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global factory

    config = ConfigManager(SERVICE_NAME)
    setup_logging(config.settings.logging)
    service_port = config.settings.communication.service_port
    logger.info(f"Starting {SERVICE_NAME} on port {service_port}")

    # Initialize factory
    factory = CommunicationServiceFactory(config)
    await factory.initialize()

    # Register with Consul if available
    consul_registry = None
    if config.settings.infra.consul_enabled:
        route_meta = get_routes_for_consul()
        consul_registry = ConsulRegistry(
            service_name=SERVICE_METADATA["service_name"],
            service_port=service_port,
            consul_host=config.settings.infra.consul_host,
            consul_port=config.settings.infra.consul_port,
            tags=SERVICE_METADATA["tags"],
            meta={
                "version": SERVICE_METADATA["version"],
                "capabilities": ",".join(SERVICE_METADATA["capabilities"]),
                **route_meta,
            },
        )
        if consul_registry.register():
            logger.info(f"Registered {SERVICE_NAME} with Consul")

    yield

    # Cleanup
    logger.info(f"Shutting down {SERVICE_NAME}")
    if consul_registry:
        consul_registry.deregister()
    await factory.close()
    factory = None


# Create FastAPI application
app = FastAPI(
    title="Communication Service",
    description="Broadcasts, offers and payment reminders for insurance clients",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


# ====================
# Exception Handlers
# ====================


@app.exception_handler(BroadcastNotFoundError)
async def broadcast_not_found_handler(request: Request, exc: BroadcastNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(OfferNotFoundError)
async def offer_not_found_handler(request: Request, exc: OfferNotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "current_status": exc.current_status.value if exc.current_status else None,
            "target_status": exc.target_status.value if exc.target_status else None,
        },
    )


@app.exception_handler(CommunicationValidationError)
async def validation_error_handler(request: Request, exc: CommunicationValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(SchedulerFault)
async def scheduler_fault_handler(request: Request, exc: SchedulerFault):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "type": "SchedulerFault"},
    )


@app.exception_handler(CommunicationServiceError)
async def service_error_handler(request: Request, exc: CommunicationServiceError):
    logger.error(f"Service error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler"""
    error_traceback = traceback.format_exc()
    logger.error(f"Unhandled exception: {exc}\n{error_traceback}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


# ====================
# Dependencies
# ====================


def get_factory() -> CommunicationServiceFactory:
    if not factory:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return factory


def get_service(current: CommunicationServiceFactory = Depends(get_factory)):
    """Get broadcast service from factory"""
    return current.service


def get_offer_service(current: CommunicationServiceFactory = Depends(get_factory)):
    """Get offer service from factory"""
    return current.offer_service


def get_reminder_scheduler(current: CommunicationServiceFactory = Depends(get_factory)):
    """Get reminder scheduler from factory"""
    return current.reminder_scheduler


def get_auth_context(request: Request) -> dict:
    """Extract auth context from request headers"""
    return {
        "user_id": request.headers.get("X-User-ID", "system"),
        "organization_id": request.headers.get("X-Organization-ID"),
        "role": request.headers.get("X-User-Role", "user"),
    }


def get_reviewer_identity(request: Request) -> str:
    """
    Acting user for approval decisions.

    No default is substituted; a missing header leaves the identity empty
    and the transition guard refuses it.
    """
    return request.headers.get("X-User-ID", "").strip()


# ====================
# Health Endpoints
# ====================


@app.get("/api/v1/communication/health")
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    dependencies = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            dependencies["postgres"] = "healthy" if db_healthy else "unhealthy"
        except Exception:
            dependencies["postgres"] = "unhealthy"

        if factory.nats_client:
            dependencies["nats"] = "healthy" if factory.nats_client.is_connected else "unhealthy"
        else:
            dependencies["nats"] = "not_configured"

        dependencies["reminder_scheduler"] = (
            "running" if factory.reminder_scheduler.is_running else "stopped"
        )

    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        port=int(os.getenv("SERVICE_PORT", "8260")),
        version=SERVICE_VERSION,
        dependencies=dependencies,
    )


@app.get("/health/ready", response_model=ReadinessResponse, tags=["Health"])
async def readiness_check():
    """Readiness check endpoint"""
    checks = {}
    details = {}

    if factory:
        try:
            db_healthy = await factory.repository.health_check()
            checks["database"] = db_healthy
            details["database"] = "Connected" if db_healthy else "Connection failed"
        except Exception as e:
            checks["database"] = False
            details["database"] = str(e)

        if factory.nats_client:
            checks["nats"] = factory.nats_client.is_connected
            details["nats"] = "Connected" if factory.nats_client.is_connected else "Disconnected"
        else:
            checks["nats"] = True  # Optional
            details["nats"] = "Not configured (optional)"
    else:
        checks["factory"] = False
        details["factory"] = "Factory not initialized"

    ready = all(checks.get(k, False) for k in ["database"])

    return ReadinessResponse(ready=ready, checks=checks, details=details)


@app.get("/health/live", response_model=LivenessResponse, tags=["Health"])
async def liveness_check():
    """Liveness check endpoint"""
    return LivenessResponse(alive=True, uptime_seconds=time.time() - startup_time)


# ====================
# Broadcast Endpoints
# ====================


@app.post(
    "/api/v1/broadcasts",
    response_model=BroadcastResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Broadcasts"],
)
async def create_broadcast(
    request: BroadcastCreateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Create a broadcast in draft status"""
    broadcast = await service.create_broadcast(request, created_by=auth["user_id"])
    return BroadcastResponse(broadcast=broadcast, message="Broadcast created successfully")


@app.get("/api/v1/broadcasts", response_model=BroadcastListResponse, tags=["Broadcasts"])
async def list_broadcasts(
    type_filter: Optional[BroadcastType] = Query(None, alias="type"),
    status_filter: Optional[BroadcastStatus] = Query(None, alias="status"),
    channel: Optional[Channel] = Query(None),
    approval_status: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Search title and description"),
    date_from: Optional[datetime] = Query(None, description="Created at or after"),
    date_to: Optional[datetime] = Query(None, description="Created at or before"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service=Depends(get_service),
):
    """List broadcasts, newest first"""
    return await service.list_broadcasts(
        broadcast_type=type_filter,
        status=status_filter,
        channel=channel,
        approval_status=approval_status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@app.get(
    "/api/v1/broadcasts/pending-approval",
    response_model=List[PendingApprovalItem],
    tags=["Broadcast Approval"],
)
async def list_pending_approval(
    limit: int = Query(100, ge=1, le=100),
    service=Depends(get_service),
):
    """Broadcasts awaiting review, with compliance warnings"""
    return await service.list_pending_approval(limit=limit)


@app.post(
    "/api/v1/broadcasts/eligible-clients",
    response_model=EligibleClientsResponse,
    tags=["Audience"],
)
async def preview_eligible_clients(
    request: EligibleClientsRequest,
    service=Depends(get_service),
):
    """
    Preview the audience of a set of targeting criteria

    Count and list of (client, channel) pairs after preference filtering.
    """
    return await service.preview_audience(request)


@app.get("/api/v1/broadcasts/{broadcast_id}", response_model=BroadcastResponse, tags=["Broadcasts"])
async def get_broadcast(broadcast_id: str, service=Depends(get_service)):
    broadcast = await service.get_broadcast(broadcast_id)
    return BroadcastResponse(broadcast=broadcast)


@app.put("/api/v1/broadcasts/{broadcast_id}", response_model=BroadcastResponse, tags=["Broadcasts"])
async def update_broadcast(
    broadcast_id: str,
    request: BroadcastUpdateRequest,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """
    Update broadcast

    Only draft or rejected broadcasts can be edited.
    """
    broadcast = await service.update_broadcast(broadcast_id, request, actor=auth["user_id"])
    return BroadcastResponse(broadcast=broadcast, message="Broadcast updated successfully")


@app.delete(
    "/api/v1/broadcasts/{broadcast_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Broadcasts"],
)
async def delete_broadcast(
    broadcast_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    await service.delete_broadcast(broadcast_id, actor=auth["user_id"])


# ====================
# Broadcast Lifecycle Endpoints
# ====================


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/submit",
    response_model=BroadcastResponse,
    tags=["Broadcast Approval"],
)
async def submit_broadcast(
    broadcast_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """Submit a draft or rejected broadcast for approval"""
    decision = await service.submit_for_approval(broadcast_id, actor=auth["user_id"])
    return BroadcastResponse(
        broadcast=decision.broadcast,
        message="Broadcast submitted for approval",
        warnings=decision.warnings,
    )


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/approve",
    response_model=BroadcastResponse,
    tags=["Broadcast Approval"],
)
async def approve_broadcast(
    broadcast_id: str,
    request: Optional[ApproveRequest] = None,
    service=Depends(get_service),
    reviewer: str = Depends(get_reviewer_identity),
):
    """
    Approve a pending broadcast

    Compliance gaps are returned as warnings and do not block approval.
    """
    decision = await service.approve_broadcast(
        broadcast_id,
        approver=reviewer,
        comment=request.comment if request else None,
    )
    return BroadcastResponse(
        broadcast=decision.broadcast,
        message="Broadcast approved",
        warnings=decision.warnings,
    )


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/reject",
    response_model=BroadcastResponse,
    tags=["Broadcast Approval"],
)
async def reject_broadcast(
    broadcast_id: str,
    request: RejectRequest,
    service=Depends(get_service),
    reviewer: str = Depends(get_reviewer_identity),
):
    """Reject a pending broadcast. A reason and reviewer identity are required."""
    decision = await service.reject_broadcast(broadcast_id, actor=reviewer, reason=request.reason)
    return BroadcastResponse(broadcast=decision.broadcast, message="Broadcast rejected")


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/schedule",
    response_model=BroadcastResponse,
    tags=["Broadcast Lifecycle"],
)
async def schedule_broadcast(
    broadcast_id: str,
    request: Optional[ScheduleRequest] = None,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """
    Schedule an approved broadcast

    Requires a future scheduled_at, a future stored schedule, or send_immediately.
    """
    request = request or ScheduleRequest()
    broadcast = await service.schedule_broadcast(
        broadcast_id,
        actor=auth["user_id"],
        scheduled_at=request.scheduled_at,
        send_immediately=request.send_immediately,
    )
    return BroadcastResponse(broadcast=broadcast, message="Broadcast scheduled")


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/send",
    response_model=BroadcastResponse,
    tags=["Broadcast Lifecycle"],
)
async def send_broadcast(
    broadcast_id: str,
    service=Depends(get_service),
    auth: dict = Depends(get_auth_context),
):
    """
    Manually dispatch an approved or scheduled broadcast

    Partial delivery failures are reported in stats, not as errors.
    """
    broadcast = await service.send_now(broadcast_id, actor=auth["user_id"])
    return BroadcastResponse(broadcast=broadcast, message=f"Broadcast {broadcast.status.value}")


# ====================
# Broadcast Reporting Endpoints
# ====================


@app.get(
    "/api/v1/broadcasts/{broadcast_id}/stats",
    response_model=BroadcastStatsResponse,
    tags=["Broadcast Reporting"],
)
async def get_broadcast_stats(broadcast_id: str, service=Depends(get_service)):
    return await service.get_stats(broadcast_id)


@app.post(
    "/api/v1/broadcasts/{broadcast_id}/revenue",
    response_model=BroadcastStats,
    tags=["Broadcast Reporting"],
)
async def record_broadcast_revenue(
    broadcast_id: str,
    request: RevenueRequest,
    service=Depends(get_service),
):
    """Attribute revenue to a sent broadcast and recompute ROI"""
    return await service.record_revenue(broadcast_id, request.amount)


@app.get(
    "/api/v1/broadcasts/{broadcast_id}/history",
    response_model=List[StatusTransition],
    tags=["Broadcast Reporting"],
)
async def get_broadcast_history(broadcast_id: str, service=Depends(get_service)):
    return await service.get_history(broadcast_id)


@app.get(
    "/api/v1/broadcasts/{broadcast_id}/recipients",
    response_model=List[DeliveryOutcome],
    tags=["Broadcast Reporting"],
)
async def list_broadcast_recipients(
    broadcast_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service=Depends(get_service),
):
    """Per-recipient delivery outcomes, including the assigned variant"""
    return await service.list_recipients(broadcast_id, limit=limit, offset=offset)


# ====================
# Offer Endpoints
# ====================


@app.post(
    "/api/v1/offers",
    response_model=OfferView,
    status_code=status.HTTP_201_CREATED,
    tags=["Offers"],
)
async def create_offer(
    request: OfferCreateRequest,
    service=Depends(get_offer_service),
    auth: dict = Depends(get_auth_context),
):
    offer = await service.create_offer(request, created_by=auth["user_id"])
    return service.view(offer)


@app.get("/api/v1/offers", response_model=OfferListResponse, tags=["Offers"])
async def list_offers(
    active: Optional[bool] = Query(None),
    type_filter: Optional[OfferType] = Query(None, alias="type"),
    product: Optional[ProductType] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service=Depends(get_offer_service),
):
    return await service.list_offers(
        is_active=active,
        offer_type=type_filter,
        product=product,
        page=page,
        limit=limit,
    )


@app.get("/api/v1/offers/{offer_id}", response_model=OfferView, tags=["Offers"])
async def get_offer(offer_id: str, service=Depends(get_offer_service)):
    offer = await service.get_offer(offer_id)
    return service.view(offer)


@app.put("/api/v1/offers/{offer_id}", response_model=OfferView, tags=["Offers"])
async def update_offer(
    offer_id: str,
    request: OfferUpdateRequest,
    service=Depends(get_offer_service),
    auth: dict = Depends(get_auth_context),
):
    offer = await service.update_offer(offer_id, request, actor=auth["user_id"])
    return service.view(offer)


@app.delete(
    "/api/v1/offers/{offer_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Offers"],
)
async def delete_offer(
    offer_id: str,
    service=Depends(get_offer_service),
    auth: dict = Depends(get_auth_context),
):
    await service.delete_offer(offer_id, actor=auth["user_id"])


@app.get(
    "/api/v1/offers/{offer_id}/eligible-clients",
    response_model=EligibleClientsResponse,
    tags=["Offers"],
)
async def offer_eligible_clients(
    offer_id: str,
    include_recipients: bool = Query(True),
    service=Depends(get_offer_service),
):
    """Clients the offer would reach by email"""
    return await service.eligible_clients(offer_id, include_recipients=include_recipients)


# ====================
# Reminder Administration Endpoints
# ====================


@app.get("/api/v1/reminders/status", response_model=SchedulerStatus, tags=["Reminders"])
async def reminder_status(scheduler=Depends(get_reminder_scheduler)):
    return scheduler.status()


@app.post("/api/v1/reminders/start", response_model=SchedulerStatus, tags=["Reminders"])
async def start_reminders(scheduler=Depends(get_reminder_scheduler)):
    """Start the reminder scheduler. No-op if already running."""
    scheduler.start()
    return scheduler.status()


@app.post("/api/v1/reminders/stop", response_model=SchedulerStatus, tags=["Reminders"])
async def stop_reminders(scheduler=Depends(get_reminder_scheduler)):
    """Stop the scheduler after any in-flight scan completes"""
    await scheduler.stop()
    return scheduler.status()


@app.post("/api/v1/reminders/trigger", response_model=ScanReport, tags=["Reminders"])
async def trigger_reminders(scheduler=Depends(get_reminder_scheduler)):
    """Run one scan now, waiting for any scheduled scan to finish first"""
    return await scheduler.trigger_once()


@app.get("/api/v1/reminders/stats", response_model=ReminderStats, tags=["Reminders"])
async def reminder_stats(scheduler=Depends(get_reminder_scheduler)):
    return await scheduler.stats()


@app.get(
    "/api/v1/reminders/invoices/{invoice_id}",
    response_model=ReminderLedgerResponse,
    tags=["Reminders"],
)
async def reminder_ledger_for_invoice(invoice_id: str, scheduler=Depends(get_reminder_scheduler)):
    entries = await scheduler.ledger_for_invoice(invoice_id)
    return ReminderLedgerResponse(invoice_id=invoice_id, entries=entries)


@app.delete("/api/v1/reminders/ledger", tags=["Reminders"])
async def clear_reminder_ledger(
    invoice_id: Optional[str] = Query(None, description="Clear one invoice only"),
    scheduler=Depends(get_reminder_scheduler),
    auth: dict = Depends(get_auth_context),
):
    """Destructive reset of reminder history"""
    removed = await scheduler.clear_ledger(invoice_id)
    logger.warning(
        f"Reminder ledger cleared by {auth['user_id']}: "
        f"{removed} entries{f' for invoice {invoice_id}' if invoice_id else ''}"
    )
    return {"removed": removed, "invoice_id": invoice_id}


# ====================
# Main Entry Point
# ====================


def main():
    """Run the service"""
    import uvicorn

    uvicorn.run(
        "microservices.communication_service.main:app",
        host="0.0.0.0",
        port=int(os.getenv("SERVICE_PORT", "8260")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
