from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recon.api.scripts import router as scripts_router
from recon.api.sessions import router as sessions_router
from recon.api.uploads import router as uploads_router
from recon.core.config import settings
from recon.core.logging import configure_logging
from recon.services.session_protocol import SessionRegistry
from recon.services.session_transport import SessionTransport, build_transport


def create_app(transport: Optional[SessionTransport] = None) -> FastAPI:
    configure_logging()

    app = FastAPI(title="Recon Pipeline", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.sessions = SessionRegistry(transport or build_transport())

    app.include_router(uploads_router)
    app.include_router(scripts_router)
    app.include_router(sessions_router)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    return app


app = create_app()
