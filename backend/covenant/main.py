from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from covenant.core.config import settings
from covenant.routers import scheduler, subscriptions

OPENAPI_TAGS = [
    {"name": "Subscriptions", "description": "Manage recurring delivery subscriptions."},
    {"name": "Scheduler", "description": "Trigger fulfillment of due subscriptions."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Recurring delivery subscriptions. Stores who receives which item from "
        "which vendor and how often, and emits fulfillment events when deliveries "
        "come due."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


app.include_router(subscriptions.router, prefix="/v1/subscriptions", tags=["Subscriptions"])
app.include_router(scheduler.router, prefix="/v1/scheduler", tags=["Scheduler"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
