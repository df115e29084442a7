import httpx
import pytest
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from shared.middleware import add_middleware_to_app


class Echo(BaseModel):
    text: str


def build_app() -> FastAPI:
    app = FastAPI()
    add_middleware_to_app(app=app, service_name="test", max_request_size=64)

    @app.post("/echo")
    async def echo(body: Echo):
        return body

    @app.get("/missing")
    async def missing():
        raise HTTPException(status_code=404, detail="Thing not found")

    return app


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=build_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.mark.asyncio
async def test_security_headers(client):
    response = await client.post("/echo", json={"text": "hi"})

    assert response.status_code == 200
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Service-Name"] == "test"


@pytest.mark.asyncio
async def test_oversized_body_is_rejected(client):
    response = await client.post("/echo", json={"text": "x" * 200})

    assert response.status_code == 413
    assert response.json()["details"]["max_size"] == 64


@pytest.mark.asyncio
async def test_unsupported_content_type(client):
    response = await client.post("/echo", content=b"<a/>", headers={"content-type": "application/xml"})

    assert response.status_code == 415


@pytest.mark.asyncio
async def test_http_errors_use_shared_envelope(client):
    response = await client.get("/missing")

    body = response.json()
    assert response.status_code == 404
    assert body["success"] is False
    assert body["error"] == "Thing not found"
    assert body["status_code"] == 404


@pytest.mark.asyncio
async def test_validation_errors_use_shared_envelope(client):
    response = await client.post("/echo", json={})

    assert response.status_code == 422
    assert response.json()["error"] == "Validation error"
