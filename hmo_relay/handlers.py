import asyncio
import logging

from fastapi import Response

from .configs import Settings
from .library import ContainerTree, Item, LibraryError, NotFound, SourceUnavailable
from .schemas import ContainerListing
from .transcoder.encoder import Encoder
from .transcoder.relay import RelayStalled, SinkWriteFailure, stream_transcode
from .transcoder.sinks import QueueSink
from .utils.http_utils import SinkStreamingResponse

logger = logging.getLogger(__name__)

# Relay tasks outlive the request handler that starts them.
_background_tasks: set[asyncio.Task] = set()


def handle_exceptions(exception: Exception) -> Response:
    """
    Handle exceptions and return appropriate HTTP responses.

    Args:
        exception (Exception): The exception that was raised.

    Returns:
        Response: An HTTP response corresponding to the exception type.
    """
    if isinstance(exception, NotFound):
        return Response(status_code=404, content=str(exception))
    elif isinstance(exception, SourceUnavailable):
        logger.error(f"Library source unavailable: {exception}")
        return Response(status_code=503, content=str(exception))
    elif isinstance(exception, LibraryError):
        logger.error(f"Library error while handling request: {exception}")
        return Response(status_code=502, content=str(exception))
    else:
        logger.exception(f"Internal server error while handling request: {exception}")
        return Response(status_code=500, content=f"Internal server error: {exception}")


async def list_container(tree: ContainerTree, path: str) -> ContainerListing | Response:
    """
    Resolve a container by title path and list its children.

    Args:
        tree (ContainerTree): The library tree.
        path (str): Slash separated titles from the root; empty for the root itself.

    Returns:
        ContainerListing: The resolved node and its (possibly freshly loaded) children.
    """
    try:
        node = await tree.resolve(path)
        children = await tree.children(node)
    except Exception as e:
        return handle_exceptions(e)
    return ContainerListing(container=node.to_schema(), children=[child.to_schema() for child in children])


async def stream_item(tree: ContainerTree, identity: str, encoder: Encoder, settings: Settings) -> Response:
    """
    Start transcoding an item and stream the result as it is produced.

    The relay runs as a background task feeding a ``QueueSink`` that the
    response body iterates; a client disconnect closes the sink, which makes
    the relay halt the transcode.
    """
    try:
        node = tree.find(identity)
    except NotFound as e:
        return handle_exceptions(e)
    if not isinstance(node, Item):
        return Response(status_code=404, content=f"{node.title_path} is not a playable item")

    logger.info("Streaming %s", node.title_path)
    sink = QueueSink()
    task = asyncio.create_task(_relay_to_client(node, sink, encoder, settings), name=f"relay:{identity}")
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return SinkStreamingResponse(sink, media_type=node.content_type)


async def _relay_to_client(item: Item, sink: QueueSink, encoder: Encoder, settings: Settings) -> None:
    try:
        result = await stream_transcode(
            item.source_identifier,
            sink,
            encoder=encoder,
            profile=settings.default_profile,
            settings=settings,
        )
        if not result.ok:
            logger.warning(
                "Transcode of %s ended %s after %d bytes: %s",
                item.title_path,
                result.status.value,
                result.bytes_forwarded,
                result.error,
            )
    except SinkWriteFailure as e:
        logger.info("Client stopped streaming %s after %d bytes", item.title_path, e.bytes_forwarded)
    except RelayStalled as e:
        logger.error("Gave up streaming %s: %s", item.title_path, e)
    except Exception:
        logger.exception("Error while streaming %s", item.title_path)
    finally:
        await sink.finish()
