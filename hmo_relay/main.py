import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.security import APIKeyHeader, APIKeyQuery
from starlette.middleware.cors import CORSMiddleware

from hmo_relay.configs import Settings, settings
from hmo_relay.library import ContainerTree
from hmo_relay.routes import library_router, stream_router
from hmo_relay.sources.factory import SourceFactory
from hmo_relay.transcoder.encoder import Encoder, PyAVEncoder

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

api_password_query = APIKeyQuery(name="api_password", auto_error=False)
api_password_header = APIKeyHeader(name="api_password", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: str = Security(api_password_query),
    api_key_alt: str = Security(api_password_header),
):
    """
    Verifies the API key for the request.

    Args:
        request (Request): The incoming request, used to reach the app's settings.
        api_key (str): The API key to validate.
        api_key_alt (str): The alternative API key to validate.

    Raises:
        HTTPException: If the API key is invalid.
    """
    api_password = request.app.state.settings.api_password
    if not api_password:
        return

    if api_key == api_password or api_key_alt == api_password:
        return

    raise HTTPException(status_code=403, detail="Could not validate credentials")


def create_app(
    app_settings: Settings | None = None,
    tree: ContainerTree | None = None,
    encoder: Encoder | None = None,
) -> FastAPI:
    """Build the application around one configuration snapshot, library tree and encoder."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        preload_task = None
        if app_settings.preload:
            preload_task = asyncio.create_task(app.state.tree.preload())
        yield
        if preload_task is not None and not preload_task.done():
            preload_task.cancel()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = app_settings
    app.state.tree = tree or SourceFactory.build_tree(app_settings)
    app.state.encoder = encoder or PyAVEncoder()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    app.include_router(library_router, prefix="/library", tags=["library"], dependencies=[Depends(verify_api_key)])
    app.include_router(stream_router, prefix="/stream", tags=["stream"], dependencies=[Depends(verify_api_key)])
    return app


app = create_app()


def run():
    import uvicorn

    logger.info("hmo-relay starting up on port %d", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
