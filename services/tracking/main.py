# services.tracking.main.py
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.tracking.routes import track_router
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
    title="Luna Tracking Service",
    version="1.0.0",
    description="Visitor geolocation, region gating and behaviour events",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="tracking", max_request_size=64 * 1024)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "tracking", "version": "1.0.0"}


app.include_router(track_router, prefix="/track", tags=["tracking"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8006))
    uvicorn.run(
        "services.tracking.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
