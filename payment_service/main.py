#!/usr/bin/env python3
"""
Payment Service
Accepts transaction references and reports their on-chain confirmation status
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import APIRouter, Depends, FastAPI, Request
from common.kafka import PaymentEventPublisher
from common.error_handling import BusinessLogicError, ErrorCodes, add_error_handlers
from common.schemas import (
    PaymentListResponse, PaymentResponse, SubmitPayment, WebhookNotification,
)
from common.settings import settings
from common.tracing import tracing_middleware
from payment_service.ledger_client import TonCenterClient
from payment_service.reconciler import Reconciler, ReconcilerConfig

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def build_reconciler() -> Reconciler:
    """Wire the reconciler from environment settings"""
    ledger = TonCenterClient(
        settings.toncenter_endpoint,
        api_key=settings.toncenter_api_key or None,
        timeout=settings.ledger_request_timeout,
    )
    publisher = None
    if settings.kafka_events_enabled:
        publisher = PaymentEventPublisher()
    return Reconciler(ledger, ReconcilerConfig.from_settings(settings), publisher=publisher)

def get_reconciler(request: Request) -> Reconciler:
    return request.app.state.reconciler

router = APIRouter(prefix="/api/payment", tags=["payment"])

@router.post("/submit", response_model=PaymentResponse, response_model_exclude_none=True)
async def submit_payment(body: SubmitPayment, reconciler: Reconciler = Depends(get_reconciler)):
    """Submit a transaction hash for monitoring"""
    intent = reconciler.submit(body.reference)
    return PaymentResponse(
        message="Payment monitoring started",
        reference=intent.reference,
        payment=intent,
    )

@router.get("/status/{reference:path}", response_model=PaymentResponse, response_model_exclude_none=True)
async def payment_status(reference: str, reconciler: Reconciler = Depends(get_reconciler)):
    """Check the status of a payment by transaction hash"""
    intent = reconciler.status(reference)
    if intent is None:
        raise BusinessLogicError(ErrorCodes.PAYMENT_NOT_FOUND, "Transaction not found")
    return PaymentResponse(payment=intent)

@router.get("/all", response_model=PaymentListResponse)
async def all_payments(reconciler: Reconciler = Depends(get_reconciler)):
    """All tracked payments (for admin/debugging)"""
    return PaymentListResponse(payments=reconciler.list_all())

@router.post("/webhook")
async def payment_webhook(notification: WebhookNotification):
    """Acknowledge an external payment notification"""
    logger.info(f"Webhook received: {notification.model_dump()}")
    return {"success": True, "message": "Webhook received"}

def create_app(reconciler: Optional[Reconciler] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Initializing TON Client...")
        await app.state.reconciler.start()
        logger.info(f"🚀 {settings.service_name} ready")
        logger.info(f"Receiver Address: {app.state.reconciler.config.receiver_address}")
        logger.info(f"Expected Amount: {app.state.reconciler.config.expected_amount} TON")
        try:
            yield
        finally:
            logger.info("Shutting down payment monitoring...")
            await app.state.reconciler.shutdown()
            if app.state.reconciler.publisher is not None:
                app.state.reconciler.publisher.close()

    app = FastAPI(title="Payment Service", version="1.0.0", lifespan=lifespan)
    app.state.reconciler = reconciler or build_reconciler()
    add_error_handlers(app)

    @app.middleware("http")
    async def add_tracing(request: Request, call_next):
        return await tracing_middleware(request, call_next)

    @app.get("/health")
    async def health(request: Request):
        rec: Reconciler = request.app.state.reconciler
        return {
            "status": "ok",
            "service": settings.service_name,
            "timestamp": time.time(),
            "ledger_ready": rec.ready,
            "monitoring": rec.active_monitor_count,
            "circuit_breaker": rec.breaker.get_state(),
        }

    @app.get("/")
    async def root(request: Request):
        rec: Reconciler = request.app.state.reconciler
        return {
            "message": f"{settings.service_name} API",
            "version": "1.0.0",
            "receiver_address": rec.config.receiver_address,
            "expected_amount": rec.config.expected_amount,
            "endpoints": {
                "health": "GET /health",
                "submitPayment": "POST /api/payment/submit",
                "checkStatus": "GET /api/payment/status/{reference}",
                "allPayments": "GET /api/payment/all",
                "webhook": "POST /api/payment/webhook",
            },
        }

    app.include_router(router)
    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
