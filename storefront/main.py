from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from storefront import __version__
from storefront.shared.utils import Clients, HealthResponse, utcnow
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware
from storefront.services.payments.gateway import RazorpayClient
from storefront.services.cart.repository import CartRepository
from storefront.services.cart.main import router as cart_router
from storefront.services.checkout.main import router as checkout_router
from storefront.services.orders.main import router as orders_router
from storefront.services.payments.main import router as payments_router
from storefront.services.images.main import router as images_router
from storefront.services.admin.main import router as admin_router

SERVICE_NAME = "storefront"

# Setup Logging
logger = setup_logging(SERVICE_NAME)

app = FastAPI(title="TAP Storefront", version=__version__)

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(images_router)
app.include_router(admin_router)

@app.on_event("startup")
async def startup_clients():
    app.state.clients = Clients.create()
    app.state.gateway = RazorpayClient()
    db = app.state.clients.mongodb
    # Indexes
    await CartRepository(db.carts).ensure_indexes()
    await db.orders.create_index("userId")
    await db.orders.create_index("razorpayOrderId")
    await db.orders.create_index([("createdAt", -1)])
    await db.payment_events.create_index("event_id", unique=True)
    logger.info("Storefront started")

@app.on_event("shutdown")
async def shutdown_clients():
    app.state.clients.close()

@app.get("/health", response_model=HealthResponse)
async def health_check():
    try:
        await app.state.clients.mongodb_client.admin.command("ping")
        db_status = "connected"
    except PyMongoError as e:
        logger.error(f"Health check failed: {e}")
        db_status = "disconnected"

    if db_status != "connected":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status="healthy",
        timestamp=utcnow(),
        version=__version__,
        database=db_status
    )
