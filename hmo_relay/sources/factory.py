from typing import Callable, Dict

from hmo_relay.configs import Settings
from hmo_relay.library.nodes import Container
from hmo_relay.library.tree import ContainerTree
from hmo_relay.schemas import ApplicationConfig
from hmo_relay.sources import filesystem, plex
from hmo_relay.sources.base import SourceError


def _filesystem_application(config: ApplicationConfig, settings: Settings) -> Container:
    return filesystem.build_application(config.identifier, config.title)


def _plex_application(config: ApplicationConfig, settings: Settings) -> Container:
    return plex.build_application(
        config.identifier,
        title=config.title,
        token=config.token,
        section=config.section,
        settings=settings,
    )


class SourceFactory:
    """Factory for creating top-level library containers."""

    _applications: Dict[str, Callable[[ApplicationConfig, Settings], Container]] = {
        "filesystem": _filesystem_application,
        "plex": _plex_application,
    }

    @classmethod
    def create_application(cls, config: ApplicationConfig, settings: Settings) -> Container:
        """Build the container for a configured application."""
        builder = cls._applications.get(config.kind)
        if not builder:
            raise SourceError(f"Unsupported application kind: {config.kind}")
        return builder(config, settings)

    @classmethod
    def build_tree(cls, settings: Settings, title: str = "hmo-relay") -> ContainerTree:
        tree = ContainerTree(title)
        for config in settings.applications:
            tree.add_application(cls.create_application(config, settings))
        return tree
