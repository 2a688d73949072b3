import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ideagen import settings
from ideagen.backend import Backend
from ideagen.errors import (
    GenerationInProgress,
    InputError,
    LedgerUnavailable,
    PersistenceError,
    PlanRequired,
    UnknownFeatureError,
    UnknownPrincipal,
)

logger = logging.getLogger("ideagen")

_backend: Optional[Backend] = None


def get_backend() -> Backend:
    global _backend
    if _backend is None:
        _backend = Backend()
    return _backend


async def sweep_loop(backend: Backend, interval: float) -> None:
    """
    Drop expired result stores and their idle orchestrators every `interval`
    seconds until cancelled.
    """
    while True:
        backend.sweep()
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    backend = app.dependency_overrides.get(get_backend, get_backend)()
    task = asyncio.create_task(sweep_loop(backend, settings.STORE_SWEEP_INTERVAL))
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="ideagen", lifespan=lifespan)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


class AccountIn(BaseModel):
    plan: str = "free"


class IdeaIn(BaseModel):
    title: str
    description: str


class GenerationIn(BaseModel):
    idea_id: Optional[str] = None
    custom_text: str = ""
    use_custom: bool = False
    params: Dict[str, Any] = Field(default_factory=dict)
    wait: bool = True


class ViewIn(BaseModel):
    active_tab: Optional[str] = None
    fullscreen: Optional[bool] = None
    page: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


# -----------------------
# Error mapping
# -----------------------

_STATUS_BY_ERROR = (
    (UnknownPrincipal, 401),
    (PlanRequired, 403),
    (UnknownFeatureError, 404),
    (GenerationInProgress, 409),
    (InputError, 422),
    (LedgerUnavailable, 503),
    (PersistenceError, 503),
)


@app.exception_handler(UnknownPrincipal)
@app.exception_handler(PlanRequired)
@app.exception_handler(UnknownFeatureError)
@app.exception_handler(GenerationInProgress)
@app.exception_handler(InputError)
@app.exception_handler(LedgerUnavailable)
@app.exception_handler(PersistenceError)
async def workflow_error_handler(request: Request, exc: Exception):
    status = 500
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            status = code
            break
    if status >= 500:
        logger.warning(f"[HTTP] {request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# -----------------------
# Accounts, credits, ideas
# -----------------------

@app.post("/accounts")
async def open_account(body: AccountIn, user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    if body.plan not in backend.catalog.plan_credits:
        raise HTTPException(status_code=422, detail=f"Unknown plan: {body.plan}")
    return backend.open_account(user_id, body.plan)


@app.get("/credits")
async def get_credits(user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    return backend.balance(user_id)


@app.get("/credits/transactions")
async def get_transactions(
    limit: int = 50,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    return backend.transactions(user_id, limit=max(1, min(limit, 500)))


@app.post("/ideas")
async def create_idea(body: IdeaIn, user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    backend.principal_for(user_id)
    idea = backend.create_idea(user_id, body.title, body.description)
    return idea.as_payload()


# -----------------------
# Features & generations
# -----------------------

@app.get("/features")
async def list_features(user_id: Optional[str] = Header(default=None, alias="X-User-Id"), backend: Backend = Depends(get_backend)):
    if not user_id:
        return backend.list_features()
    principal = backend.principal_for(user_id)
    return backend.list_features(principal.plan, first_use=not principal.first_analysis_done)


@app.post("/generations/{feature}")
async def start_generation(
    feature: str,
    body: GenerationIn,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    backend.catalog.get(feature)
    selection = backend.build_selection(
        user_id,
        idea_id=body.idea_id,
        custom_text=body.custom_text,
        use_custom=body.use_custom,
    )
    if body.wait:
        return await backend.generate(user_id, feature, selection, body.params)
    return backend.start_generation(user_id, feature, selection, body.params)


@app.get("/generations/{feature}")
async def get_generation(feature: str, user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    return backend.state(user_id, feature)


@app.patch("/generations/{feature}/view")
async def update_view(
    feature: str,
    body: ViewIn,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    changes = {k: v for k, v in body.model_dump(exclude={"extra"}).items() if v is not None}
    changes.update(body.extra)
    return backend.set_view(user_id, feature, **changes)


@app.post("/generations/{feature}/reset")
async def reset_generation(feature: str, user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    return backend.reset(user_id, feature)


@app.post("/generations/{feature}/detach")
async def detach_generation(feature: str, user_id: str = Depends(current_user), backend: Backend = Depends(get_backend)):
    return backend.detach(user_id, feature)


@app.get("/content/{feature}")
async def get_content(
    feature: str,
    idea_id: Optional[str] = None,
    user_id: str = Depends(current_user),
    backend: Backend = Depends(get_backend),
):
    content = await backend.latest_content(user_id, feature, idea_id=idea_id)
    if content is None:
        raise HTTPException(status_code=404, detail=f"No saved {feature} content")
    return content


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
