"""Fresh Grocery FastAPI application.

Single-domain web server that processes commands synchronously via HTTP.
Every request runs inside the grocery domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay and the log format.
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from grocery.domain import grocery  # noqa: E402

grocery.init()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Fresh Grocery API",
    description="Grocery orders, payments and deliveries for Tanzania",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the grocery domain context for each request."""
    with grocery.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from grocery.api import (  # noqa: E402
    delivery_router,
    inventory_router,
    order_router,
    payment_router,
    reconciliation_router,
    register_error_handlers,
)

app.include_router(order_router)
app.include_router(delivery_router)
app.include_router(payment_router)
app.include_router(reconciliation_router)
app.include_router(inventory_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": grocery.name})
