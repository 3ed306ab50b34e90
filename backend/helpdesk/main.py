from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from helpdesk.core.config import settings
from helpdesk.core.exceptions import HelpdeskException
from helpdesk.core.logging import setup_logging
from helpdesk.routers import automations, sla


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(automations.router, prefix="/api/automations", tags=["automations"])
    app.include_router(sla.router, prefix="/api/sla", tags=["sla"])

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.exception_handler(HelpdeskException)
    async def handle_helpdesk_exception(_: Request, exc: HelpdeskException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
