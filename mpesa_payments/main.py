from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from mpesa_payments.config import get_settings
from mpesa_payments.database import Base, engine
from mpesa_payments.logging import setup_logging
from mpesa_payments import models  # noqa: F401


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="M-Pesa Payments API",
    description="STK push payments reconciled from Safaricom callbacks and status queries",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "mpesa-payments-api"}


from mpesa_payments.routers import mpesa, orders  # noqa: E402
app.include_router(mpesa.router, prefix="/api/v1/mpesa", tags=["mpesa"])
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
