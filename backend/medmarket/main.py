from fastapi import Depends, FastAPI, WebSocket, Response, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import os
import time
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sqlalchemy.orm import Session
from . import messages, pubsub
from .auth import caller_for_token
from .database import get_db, init_db
from .errors import ErrorCode, WorkflowError
from .routes import audit, quotes, service_requests

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app = FastAPI(title="MedMarket API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address, default_limits=["300/minute"])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if os.getenv("TESTING") != "1":
    app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    headers = {}
    if exc.code == ErrorCode.RATE_LIMITED and exc.retry_after_ms is not None:
        headers["Retry-After"] = str(max(1, -(-int(exc.retry_after_ms) // 1000)))
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "detail": {
                "code": exc.code.value,
                "message": messages.render(exc.code, exc.context),
                "context": exc.context,
            }
        },
        headers=headers or None,
    )


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.on_event("startup")
def create_tables():
    if os.getenv("TESTING") != "1":
        init_db()


app.include_router(service_requests.router)
app.include_router(quotes.router)
app.include_router(audit.router)


def _dependency_calls(dependant):
    for dep in dependant.dependencies:
        yield dep.call
        yield from _dependency_calls(dep)


def audit_routes():
    from fastapi.routing import APIRoute
    from .auth import get_current_user

    public_paths = {
        "/metrics",
    }
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api") and route.path not in public_paths:
            if get_current_user not in list(_dependency_calls(route.dependant)):
                raise RuntimeError(f"Route {route.path} missing authentication")


audit_routes()


@app.websocket("/ws/organizations/{org_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    org_id: str,
    token: str | None = None,
    db: Session = Depends(get_db),
):
    # only members of the organization may listen to its events
    try:
        caller = caller_for_token(db, token, org_id)
    except WorkflowError:
        caller = None
    if caller is None or caller.organization_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    async for data in pubsub.iter_organization_events(caller.organization_id):
        await websocket.send_text(data)
