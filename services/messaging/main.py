import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.messaging.background import start_background_tasks, stop_background_tasks
from services.messaging.routes import jobs_router, push_router, sms_router, webhook_router
from shared.database import close_db, init_db
from shared.middleware import add_middleware_to_app
from shared.redis_client import close_redis, init_redis

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

RUN_BACKGROUND_JOBS = os.getenv("RUN_BACKGROUND_JOBS", "true").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()
    await init_redis()
    if RUN_BACKGROUND_JOBS:
        await start_background_tasks()
    yield
    # Shutdown
    if RUN_BACKGROUND_JOBS:
        await stop_background_tasks()
    await close_db()
    await close_redis()


app = FastAPI(
    title="Luna Messaging Service",
    version="1.0.0",
    description="SMS, web push, scheduled dispatch and automated campaigns for Luna",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="messaging", max_request_size=64 * 1024)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "messaging", "version": "1.0.0"}


app.include_router(sms_router, prefix="/sms", tags=["sms"])
app.include_router(push_router, prefix="/push", tags=["push"])
app.include_router(jobs_router, prefix="/jobs", tags=["jobs"])
app.include_router(webhook_router, prefix="/webhooks", tags=["webhooks"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8002))
    uvicorn.run(
        "services.messaging.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
