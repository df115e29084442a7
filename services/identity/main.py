import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.identity.routes import phone_router, user_router
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
    title="Luna Identity Service",
    version="1.0.0",
    description="Profiles, roles and phone verification for Luna",
    lifespan=lifespan,
)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="identity", max_request_size=64 * 1024)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "identity", "version": "1.0.0"}


app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(phone_router, prefix="/phone", tags=["phone"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8001))
    uvicorn.run(
        "services.identity.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
