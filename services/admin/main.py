# services.admin.main.py
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.admin.routes import (
    campaigns_router,
    content_router,
    sms_router,
    tiers_router,
    users_router,
)
from shared.database import close_db, init_db
from shared.middleware import add_middleware_to_app
from shared.redis_client import close_redis, init_redis

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting admin service initialization...")
    await init_db()
    await init_redis()
    logger.info("Admin service startup completed")
    yield
    # Shutdown
    await close_db()
    await close_redis()


app = FastAPI(
    title="Luna Admin Service",
    version="1.0.0",
    description="Content management, scheduled SMS, user adjustments and tier pricing",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="admin")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "admin", "version": "1.0.0"}


app.include_router(content_router, prefix="/admin/content", tags=["content"])
app.include_router(sms_router, prefix="/admin/sms", tags=["sms"])
app.include_router(users_router, prefix="/admin/users", tags=["users"])
app.include_router(tiers_router, prefix="/admin/tiers", tags=["tiers"])
app.include_router(campaigns_router, prefix="/admin/campaigns", tags=["campaigns"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8007))
    uvicorn.run(
        "services.admin.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
