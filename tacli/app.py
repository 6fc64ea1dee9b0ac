from dataclasses import dataclass

from .acquire import Orchestrator
from .capture import StreamLocator
from .catalog import Catalog
from .config import Settings
from .history import WatchHistory
from .playback import PlaybackCoordinator, SingleFlight
from .presence import PresenceNotifier
from .server import StaticServer


@dataclass
class AppContext:
    """Long-lived state shared by one CLI run."""

    settings: Settings
    server: StaticServer
    prefetch: SingleFlight
    history: WatchHistory
    catalog: Catalog
    presence: PresenceNotifier
    locator: StreamLocator
    coordinator: PlaybackCoordinator
    orchestrator: Orchestrator

    @classmethod
    def create(cls, settings: Settings, catalog: Catalog = None, locator: StreamLocator = None) -> "AppContext":
        server = StaticServer(settings.cache_dir, settings.host, settings.port, settings.url_prefix)
        prefetch = SingleFlight()
        history = WatchHistory(settings.history_path, settings.history_limit)
        catalog = catalog or Catalog()
        presence = PresenceNotifier(settings.discord_client_id, catalog, enabled=settings.presence)
        locator = locator or StreamLocator(settings)
        coordinator = PlaybackCoordinator(settings, server, prefetch, history=history, presence=presence)
        orchestrator = Orchestrator(settings, locator, coordinator)
        coordinator.bind(orchestrator)
        return cls(settings, server, prefetch, history, catalog, presence, locator, coordinator, orchestrator)

    async def close(self):
        await self.prefetch.cancel_all()
        await self.server.stop()
        await self.presence.close()
        await self.catalog.close()
