from dreamhome.route import setup_routes
from fastapi import FastAPI
from contextlib import asynccontextmanager
from dreamhome.middleware import setup_middlewares
from dreamhome.config import settings
from dreamhome.logger import setup_logger
from dreamhome.services.nano_banana_client import NanoBananaClient
from dreamhome.services.run_context import get_run_registry
from loguru import logger

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up...")
    registry = get_run_registry()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await registry.shutdown()
    if NanoBananaClient._instance is not None:
        await NanoBananaClient._instance.close()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

# Setup logger
setup_logger(settings)

# Attach config to the app instance
app.state.config = settings

# Apply all middlewares first
setup_middlewares(app)

# Then setup routes
setup_routes(app)
