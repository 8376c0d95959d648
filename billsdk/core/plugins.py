"""Plugin host: schema extension, extra endpoints and time provider replacement."""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from billsdk.adapters.schema import Schema, resolve_schema
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.config import Settings
from billsdk.core.errors import ConfigurationError
from billsdk.services.time_provider import TimeProvider

logger = logging.getLogger(__name__)

EndpointHandler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class PluginEndpoint:
    """Extra route exposed by a plugin.

    ``handler`` receives the request parameters: the JSON body for POST, the
    query string for GET.
    """

    method: str
    path: str
    handler: EndpointHandler


@dataclass
class PluginContext:
    """What a plugin sees while it initializes."""

    storage: StorageAdapter
    settings: Settings
    schema: Schema
    time_provider: TimeProvider
    logger: logging.Logger


class Plugin:
    """Base class for engine plugins.

    Subclasses set ``id`` and may declare ``schema`` tables, return extra
    ``endpoints`` and replace the engine clock from ``init``.
    """

    id: str = ""
    schema: Schema | None = None

    @property
    def endpoints(self) -> list[PluginEndpoint]:
        return []

    def init(self, ctx: PluginContext) -> TimeProvider | None:
        return None


@dataclass
class PluginHost:
    plugins: list[Plugin] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for plugin in self.plugins:
            if not plugin.id:
                raise ConfigurationError(f"Plugin {type(plugin).__name__} has no id")
            if plugin.id in seen:
                raise ConfigurationError(f"Duplicate plugin id: {plugin.id}")
            seen.add(plugin.id)

    @classmethod
    def from_plugins(cls, plugins: Iterable[Plugin]) -> "PluginHost":
        return cls(list(plugins))

    def resolve_schema(self) -> Schema:
        return resolve_schema({p.id: p.schema for p in self.plugins if p.schema})

    def init(
        self,
        storage: StorageAdapter,
        config: Settings,
        schema: Schema,
        time_provider: TimeProvider,
    ) -> TimeProvider:
        """Run each plugin's ``init`` once and return the resolved clock.

        Raises:
            ConfigurationError: If more than one plugin replaces the time provider.
        """
        replaced_by: str | None = None
        for plugin in self.plugins:
            ctx = PluginContext(
                storage=storage,
                settings=config,
                schema=schema,
                time_provider=time_provider,
                logger=logging.getLogger(f"billsdk.plugins.{plugin.id}"),
            )
            provider = plugin.init(ctx)
            if provider is None:
                continue
            if replaced_by is not None:
                raise ConfigurationError(
                    f"Plugins '{replaced_by}' and '{plugin.id}' both replace the time provider"
                )
            replaced_by = plugin.id
            time_provider = provider
            logger.info("Time provider replaced by plugin %s", plugin.id)
        return time_provider

    @property
    def endpoints(self) -> list[PluginEndpoint]:
        return [endpoint for plugin in self.plugins for endpoint in plugin.endpoints]
