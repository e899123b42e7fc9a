"""
CRM Documents - API Backend
RFI / Quotation / Purchase Order / Invoice lifecycle

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import AutoReconnect, ExecutionTimeout, NetworkTimeout, ServerSelectionTimeoutError
import logging

from config import CORS_ORIGINS, LOG_LEVEL, client
from services.errors import DocumentError

# Logging configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("crm_documents")

app = FastAPI(
    title="CRM Documents",
    description="Commercial document lifecycle: numbering, totals, payments, conversions",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERROR HANDLERS ====================

@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(ServerSelectionTimeoutError)
@app.exception_handler(AutoReconnect)
@app.exception_handler(ExecutionTimeout)
@app.exception_handler(NetworkTimeout)
async def database_unavailable_handler(request: Request, exc: Exception):
    logger.error(f"[API] Database unavailable on {request.method} {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=503, content={
        "success": False,
        "error": "DatabaseUnavailable",
        "detail": "Database temporarily unavailable, please retry",
        "details": {},
        "retryable": True,
    })


# ==================== ROUTES ====================

from routes import rfis, quotations, purchase_orders, invoices, event_log

app.include_router(rfis.router, prefix="/api")
app.include_router(quotations.router, prefix="/api")
app.include_router(purchase_orders.router, prefix="/api")
app.include_router(invoices.router, prefix="/api")
app.include_router(event_log.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "CRM Documents API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from routes.deps import get_lifecycle_service

    await get_lifecycle_service().ensure_indexes()
    logger.info("CRM Documents started")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
