from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, plans
from .config import settings
from .logging_config import setup_logging
from .runtime import build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # Raises ConfigurationError before the server accepts traffic
    runtime = build_runtime(settings)
    app.state.runtime = runtime
    try:
        yield
    finally:
        await runtime.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="dcaflow",
        description="Server-side executor for recurring USDC DCA plans",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(plans.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "dcaflow",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dcaflow.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
