from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dreamhome.middleware.logging import log_requests_middleware


def setup_middlewares(app: FastAPI):
    """Attach CORS and request logging middlewares."""
    settings = app.state.config

    app.middleware("http")(log_requests_middleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=settings.CORS_METHODS,
        allow_headers=settings.CORS_HEADERS,
    )
