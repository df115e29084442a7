# services/ledger/main.py
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.ledger.routes import (
    checkout_router,
    coins_router,
    minutes_router,
    referral_router,
    subscription_router,
)
from shared.database import close_db, init_db
from shared.middleware import add_middleware_to_app
from shared.redis_client import close_redis, init_redis

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()
    await init_redis()
    yield
    # Shutdown
    await close_db()
    await close_redis()


app = FastAPI(
    title="Luna Ledger Service",
    version="1.0.0",
    description="Coins, voice minutes, checkout, subscriptions and referral rewards",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="ledger")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "ledger", "version": "1.0.0"}


app.include_router(coins_router, prefix="/coins", tags=["coins"])
app.include_router(minutes_router, prefix="/minutes", tags=["minutes"])
app.include_router(checkout_router, prefix="/checkout", tags=["checkout"])
app.include_router(subscription_router, prefix="/subscription", tags=["subscription"])
app.include_router(referral_router, prefix="/referrals", tags=["referrals"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8003))
    uvicorn.run(
        "services.ledger.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
