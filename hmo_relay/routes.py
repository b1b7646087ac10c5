from fastapi import APIRouter, Request

from .handlers import list_container, stream_item
from .schemas import ContainerListing

library_router = APIRouter()
stream_router = APIRouter()


@library_router.get("", response_model=ContainerListing)
@library_router.get("/{path:path}", response_model=ContainerListing)
async def library_listing(request: Request, path: str = ""):
    """
    List a library container.

    Args:
        request (Request): The incoming HTTP request.
        path (str): Titles from the root to the container, separated by slashes. Empty lists the root.

    Returns:
        ContainerListing: The container and its children, loading them from the backing source on first access.
    """
    return await list_container(request.app.state.tree, path)


@stream_router.get("/{identity}")
async def stream_endpoint(request: Request, identity: str):
    """
    Stream an item, transcoded with the configured encoding profile.

    Args:
        request (Request): The incoming HTTP request.
        identity (str): The identity of an item that has been listed before.

    Returns:
        Response: The streaming response with the transcoded content.
    """
    state = request.app.state
    return await stream_item(state.tree, identity, state.encoder, state.settings)
