# app.py — builds the catalog API, mounts routers, exposes health, and surfaces mount failures

import logging
import sys
import time
import traceback
from importlib import import_module

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import load_config
from adapters.db import DatabaseAdapter, create_engine_from_config
from api.errors import register_error_handlers
from api.middleware.roles import RoleResolutionMiddleware
from core.metrics import record_api_call
from core.rbac.resolve import configure_resolver
from core.rbac.tokens import TokenCodec
from core.users import AuthService

logger = logging.getLogger(__name__)

ROUTER_MODULES = [
    "books",
    "categories",
    "tags",
    "authors",
    "comments",
    "users",
    "debug",
]


def create_app(config=None, adapter=None) -> FastAPI:
    """
    Build the application.

    Args:
        config: Config dict as returned by load_config() (loaded from env when None)
        adapter: Store to use; built from DATABASE_URL when None
    """
    cfg = config if config is not None else load_config()

    logging.basicConfig(
        level=cfg.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if adapter is None:
        adapter = DatabaseAdapter(create_engine_from_config(cfg))

    token_codec = TokenCodec(
        secret=cfg["JWT_SECRET"],
        algorithm=cfg.get("JWT_ALGO", "HS256"),
        expire_minutes=cfg.get("ACCESS_TOKEN_EXPIRE_MINUTES", 43200),
    )
    configure_resolver(token_codec, adapter.get_user)

    app = FastAPI(
        title="Library Catalog",
        version="0.1.0",
        description="Multi-tenant book catalog with role-based visibility and a category tree.",
    )
    app.state.config = cfg
    app.state.adapter = adapter
    app.state.token_codec = token_codec

    # Added first so it runs innermost, after CORS and timing
    app.add_middleware(RoleResolutionMiddleware, timeout_ms=cfg.get("REQUEST_TIMEOUT_MS"))

    @app.middleware("http")
    async def record_api_timing(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        record_api_call(endpoint, request.method, response.status_code, (time.time() - start) * 1000)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get("CORS_ALLOW_ORIGINS", ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Track router mount failures so 404s aren't mysteries.
    router_failures = []
    mounted = []

    def _mount(router_module_name: str):
        try:
            mod = import_module(f"api.{router_module_name}")
            app.include_router(mod.router)
            mounted.append(router_module_name)
            logger.info(f"[routers] mounted {router_module_name}")
        except Exception as e:
            msg = repr(e)
            router_failures.append({"router": router_module_name, "error": msg})
            logger.warning(f"[routers] failed to mount '{router_module_name}': {msg}")

    for name in ROUTER_MODULES:
        _mount(name)

    @app.get("/debug/routers")
    def debug_routers():
        """Shows which routers mounted successfully and which failed at import time."""
        return {
            "mounted": mounted,
            "failures": router_failures,
        }

    @app.get("/healthz")
    async def healthz():
        """Minimal liveness probe."""
        return {"status": "ok"}

    if cfg.get("BOOTSTRAP_SUPERADMIN_EMAIL"):
        AuthService(adapter, token_codec).bootstrap_superadmin(
            cfg["BOOTSTRAP_SUPERADMIN_EMAIL"], cfg["BOOTSTRAP_SUPERADMIN_PASSWORD"]
        )

    return app


def main():
    """Entry point: load config from the environment and serve with uvicorn."""
    import uvicorn

    try:
        cfg = load_config()
    except Exception as e:
        print("=" * 80, file=sys.stderr)
        print("FATAL: Failed to load configuration", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        print(file=sys.stderr)
        print("Full traceback:", file=sys.stderr)
        traceback.print_exc(file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        sys.exit(1)

    uvicorn.run(create_app(cfg), host="0.0.0.0", port=cfg.get("PORT", 8000))


if __name__ == "__main__":
    main()
