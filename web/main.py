"""
FastAPI web application serving the sales dashboard API.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from salesboard.config import VERSION, ConfigurationError, validate_config
from salesboard.crm_client import close_client
from salesboard.exceptions import QueryError, ValidationError
from salesboard.observability import get_correlation_id, get_logger, setup_logging
from salesboard.repositories import close_store, get_store
from salesboard.scheduler import start_scheduler, stop_scheduler
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from web.routes import api

# LOG_FORMAT=json in production, console format otherwise
setup_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Salesboard",
    description="Invoice sync and sales dashboard API",
    version=VERSION,
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    logger.error(f"Query failed: {exc}", extra={"query": exc.query, "path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={
            "detail": exc.message,
            "error": exc.details,
            "correlation_id": get_correlation_id(),
        },
    )


# Later middleware wraps earlier: timeout sits inside request logging
app.add_middleware(RequestTimeoutMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(api.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    logger.info("Salesboard starting...")

    # Validate configuration early - fail fast with clear errors
    try:
        validate_config()
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    store = await get_store()
    stats = await store.get_stats()
    logger.info(
        f"DuckDB ready: {stats['total_invoices']} invoices, "
        f"{stats['total_employees']} employees"
    )

    try:
        await start_scheduler()
        logger.info("Background sync scheduler started")
    except Exception as e:
        logger.error(f"Scheduler initialization failed: {e}", exc_info=True)
        # Non-fatal - queries work without scheduled syncs

    logger.info("Salesboard ready")


@app.on_event("shutdown")
async def shutdown_event():
    try:
        stop_scheduler()
    except Exception as e:
        logger.warning(f"Error stopping scheduler: {e}")

    try:
        await close_client()
    except Exception as e:
        logger.warning(f"Error closing OneUp client: {e}")

    await close_store()
    logger.info("Salesboard stopped")


if __name__ == "__main__":
    import uvicorn
    from salesboard.config import config

    uvicorn.run("web.main:app", host=config.web.host, port=config.web.port)
