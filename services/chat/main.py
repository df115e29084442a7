# services.chat.main.py
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables
load_dotenv()

from services.chat.routes import chat_router, conversation_router
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
    title="Luna Chat Service",
    version="1.0.0",
    description="Luna AI companion chat and conversation history",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_middleware_to_app(app=app, service_name="chat")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "chat", "version": "1.0.0"}


app.include_router(chat_router, prefix="/chat", tags=["chat"])
app.include_router(conversation_router, prefix="/conversations", tags=["conversations"])

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8005))
    uvicorn.run(
        "services.chat.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
