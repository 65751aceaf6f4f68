import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Importing config loads backend/.env before the services read the environment
from portal.config import get_settings
from portal.api.deps import Portal, build_portal
from portal.api.routes import exam, results
from portal.utils.errors import PortalError
from portal.utils.logging_config import configure_logging


def create_app(portal: Optional[Portal] = None) -> FastAPI:
    if portal is None:
        settings = get_settings()
        configure_logging(settings.log_level)
        portal = build_portal(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        portal.session_manager.shutdown()

    app = FastAPI(title="Proctored Exam Portal", version="1.0.0", lifespan=lifespan)
    app.state.portal = portal

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=portal.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Include routers
    app.include_router(exam.router, prefix="/api/exams", tags=["exams"])
    app.include_router(results.router, prefix="/api/results", tags=["results"])

    @app.get("/")
    def root():
        return {"message": "Proctored Exam Portal API"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


app = create_app()


def run():
    """Serve the API with uvicorn"""
    import uvicorn

    uvicorn.run(
        "portal.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT") or 8000),
        log_level="info",
    )
