import os
import asyncio
from fastapi import FastAPI
from starlette.middleware.trustedhost import TrustedHostMiddleware
from pflix_billing.observability import RequestLoggingMiddleware
from pflix_billing.services.subscriptions import run_subscription_expiry_loop
from pflix_billing.routers import asaas_webhook, inter_webhook, subscriptions

app = FastAPI(title="Pflix Billing API")


def _parse_env_list(name: str) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]

trusted_hosts = _parse_env_list("TRUSTED_HOSTS")

if trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.add_middleware(RequestLoggingMiddleware)

@app.on_event("startup")
async def start_background_tasks():
    app.state.subscription_expiry_task = asyncio.create_task(run_subscription_expiry_loop())

@app.on_event("shutdown")
async def stop_background_tasks():
    task = getattr(app.state, "subscription_expiry_task", None)
    if task and not task.done():
        task.cancel()

@app.get("/health")
def health(): return {"ok": True}

app.include_router(asaas_webhook.router)
app.include_router(inter_webhook.router)
app.include_router(subscriptions.router)
