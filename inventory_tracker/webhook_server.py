"""FastAPI server receiving change webhooks from the hosted database.

Each accepted payload becomes a ``ChangeEvent`` that is dispatched to the
process-wide change feed in a background task.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, HTTPException, BackgroundTasks
from fastapi.responses import JSONResponse

from .api.store_client import StoreClient
from .middleware.webhook_validator import WebhookValidator
from .models.transform import is_low_stock
from .services.change_feed import ChangeEvent, get_change_feed
from .services.inventory_service import InventoryService
from .utils.logger import get_webhook_logger
from .utils.config import get_config
from .utils.exceptions import WebhookValidationError

# Initialize shared state
config = get_config()
logger = get_webhook_logger()
webhook_validator = WebhookValidator()
change_feed = get_change_feed()


def log_low_stock(event: ChangeEvent):
    """Warn when an inserted or updated item is at or below its threshold."""
    item = event.new
    if item is not None and is_low_stock(item):
        logger.warning(
            f"Low stock: {item.name} ({item.sku}) has {item.quantity} left "
            f"(threshold {item.low_stock_threshold})"
        )


# ------------------------------------------------------------------
# Lifespan
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup / shutdown of the application."""
    logger.info("=" * 60)
    logger.info("Inventory Change Webhook Server Starting")
    logger.info("=" * 60)
    logger.info(f"Environment:          {config.env.environment}")
    logger.info(f"Port:                 {config.env.port}")
    logger.info(f"Webhook validation:   {config.webhook.validate_signature}")
    logger.info("=" * 60)

    store = StoreClient()
    service = InventoryService(store, feed=change_feed)

    status = service.initialize()
    if not status["success"]:
        logger.warning(f"Starting without a verified database connection: {status['message']}")

    low_stock_alerts = service.subscribe_to_inventory_items(log_low_stock)
    app.state.inventory_service = service

    yield

    low_stock_alerts.unsubscribe()
    store.close()
    logger.info("Webhook server shut down.")


# ------------------------------------------------------------------
# FastAPI app
# ------------------------------------------------------------------

app = FastAPI(
    title="Inventory Change Webhook Server",
    description="Receives row change events for inventory items and categories",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Inventory Change Webhook Server",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": config.env.environment,
        "subscriptions": change_feed.subscription_count
    }


# ------------------------------------------------------------------
# Change webhook
# ------------------------------------------------------------------

@app.post("/webhooks/store/changes")
async def store_change_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive one INSERT / UPDATE / DELETE event from the database.

    Payload: ``{"type", "table", "schema", "record", "old_record"}``.
    """
    body = await request.body()
    signature = request.headers.get(webhook_validator.header)

    try:
        webhook_validator.validate_signature(body, signature)
    except WebhookValidationError as e:
        logger.error(f"Webhook validation failed: {e.message}")
        raise HTTPException(status_code=401, detail=e.message)

    try:
        event = ChangeEvent.from_webhook_payload(json.loads(body))
        webhook_validator.validate_table(event.table)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in webhook: {str(e)}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    except ValueError as e:
        logger.error(f"Invalid change payload: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))
    except WebhookValidationError as e:
        logger.error(f"Rejected change payload: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    logger.info(f"Received {event.event_type} on {event.table}")
    background_tasks.add_task(change_feed.dispatch, event)

    return JSONResponse(
        status_code=200,
        content={
            "status": "accepted",
            "table": event.table,
            "type": event.event_type
        }
    )


# ------------------------------------------------------------------
# Exception handlers
# ------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Custom HTTP exception handler."""
    logger.warning(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unexpected errors."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if not config.is_production else "An error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "inventory_tracker.webhook_server:app",
        host="0.0.0.0",
        port=config.env.port,
        reload=not config.is_production
    )
