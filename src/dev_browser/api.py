from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .actions import GatedActions
from .config import ServeOptions
from .errors import DevBrowserError, Internal, NotFound, Unauthorized
from .registry import SessionRegistry

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Dev-Browser-Token"


class GetPageRequest(BaseModel):
    # Validated by the registry so bad names map to 400 with a precise message.
    name: Any = None


class GetPageResponse(BaseModel):
    wsEndpoint: Optional[str] = None
    name: str
    targetId: Optional[str] = None


class ListPagesResponse(BaseModel):
    pages: List[str]


class ServerInfoResponse(BaseModel):
    wsEndpoint: Optional[str] = None
    mode: str


class GotoRequest(BaseModel):
    url: Any = None


class SnapshotRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)


class RefRequest(BaseModel):
    ref: Any = None


class FillRequest(BaseModel):
    ref: Any = None
    text: Any = None


class PressRequest(BaseModel):
    key: Any = None
    ref: Any = None


class ScreenshotRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: Any = None
    full_page: bool = Field(default=False, alias="fullPage")


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    value = authorization.strip()
    if not value.lower().startswith("bearer "):
        return None
    token = value[7:].strip()
    return token or None


def _tokens_match(presented: str, expected: str) -> bool:
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def build_auth_dependency(expected_token: str) -> Callable[..., Any]:
    async def require_token(
        authorization: Optional[str] = Header(default=None, alias="Authorization"),
        token_header: Optional[str] = Header(default=None, alias=TOKEN_HEADER),
    ) -> None:
        presented = _extract_bearer_token(authorization) or (token_header or "").strip() or None
        if not presented or not _tokens_match(presented, expected_token):
            raise Unauthorized()

    return require_token


class _GuardedRoute(APIRoute):
    """Turns unexpected handler failures into a generic 500 payload."""

    def get_route_handler(self) -> Callable:
        original = super().get_route_handler()

        async def handler(request: Request):
            try:
                return await original(request)
            except (DevBrowserError, RequestValidationError, StarletteHTTPException):
                raise
            except Exception:
                logger.exception("Request handler error: %s %s", request.method, request.url.path)
                return JSONResponse(status_code=500, content=Internal().to_payload())

        return handler


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DevBrowserError)
    async def _dev_browser_error(request: Request, exc: DevBrowserError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.kind)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "message": "invalid request body"},
        )


def build_app(
    options: ServeOptions,
    registry: SessionRegistry,
    *,
    actions: Optional[GatedActions] = None,
    ws_endpoint: Optional[str] = None,
) -> FastAPI:
    """Build the control API for one browser context."""
    if options.lockdown and actions is None:
        raise ValueError("lockdown mode requires gated actions")

    dependencies = []
    if options.require_auth:
        if not options.auth_token:
            raise ValueError("auth required but no token configured")
        dependencies.append(Depends(build_auth_dependency(options.auth_token)))

    # Schema and docs routes bypass route dependencies, so they are not served.
    app = FastAPI(
        title="Dev Browser",
        version="0.1",
        dependencies=dependencies,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.router.route_class = _GuardedRoute
    _install_error_handlers(app)

    # Lockdown never hands out a raw scripting endpoint.
    public_ws_endpoint = None if options.lockdown else ws_endpoint

    @app.get("/", response_model=ServerInfoResponse)
    async def server_info() -> ServerInfoResponse:
        return ServerInfoResponse(wsEndpoint=public_ws_endpoint, mode=options.mode)

    @app.get("/pages", response_model=ListPagesResponse)
    async def list_pages() -> ListPagesResponse:
        return ListPagesResponse(pages=registry.list_names())

    @app.post("/pages")
    async def get_page(req: GetPageRequest) -> Dict[str, Any]:
        session = await registry.get_or_create(req.name)
        response = GetPageResponse(wsEndpoint=public_ws_endpoint, name=session.name)
        if options.lockdown:
            return response.model_dump(exclude={"targetId"})
        response.targetId = session.target_id
        return response.model_dump()

    @app.delete("/pages/{name}")
    async def delete_page(name: str) -> Dict[str, Any]:
        if not await registry.remove(name):
            raise NotFound("page not found")
        return {"success": True}

    if options.lockdown:
        _add_lockdown_routes(app, registry, actions)

    return app


def _add_lockdown_routes(app: FastAPI, registry: SessionRegistry, actions: GatedActions) -> None:
    @app.post("/pages/{name}/goto")
    async def goto(name: str, req: GotoRequest) -> Dict[str, Any]:
        return await actions.goto(registry.get(name), req.url)

    @app.post("/pages/{name}/snapshot")
    async def snapshot(name: str, req: Optional[SnapshotRequest] = None) -> Dict[str, Any]:
        limit = req.limit if req is not None else None
        return await actions.snapshot(registry.get(name), limit)

    @app.post("/pages/{name}/click-ref")
    async def click_ref(name: str, req: RefRequest) -> Dict[str, Any]:
        return await actions.click_ref(registry.get(name), req.ref)

    @app.post("/pages/{name}/fill-ref")
    async def fill_ref(name: str, req: FillRequest) -> Dict[str, Any]:
        return await actions.fill_ref(registry.get(name), req.ref, req.text)

    @app.post("/pages/{name}/press")
    async def press(name: str, req: PressRequest) -> Dict[str, Any]:
        return await actions.press(registry.get(name), req.key, req.ref)

    @app.post("/pages/{name}/screenshot")
    async def screenshot(name: str, req: ScreenshotRequest) -> Dict[str, Any]:
        return await actions.screenshot(registry.get(name), req.path, req.full_page)
