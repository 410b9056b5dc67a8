"""Dependency injection container and service wiring."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

from db_provisioner.adapters.outbound.container_store import ContainerStore
from db_provisioner.adapters.outbound.engine_capabilities import BUILTIN_ENGINES, EngineEntry
from db_provisioner.adapters.outbound.file_registry_store import FileRegistryStore
from db_provisioner.adapters.outbound.pid_liveness import PidFileLivenessOracle
from db_provisioner.adapters.outbound.port_allocator import PortAllocator
from db_provisioner.adapters.outbound.registry_lock import RegistryLock
from db_provisioner.adapters.outbound.release_index import (
    HttpClientFactory,
    ReleaseIndexClient,
    default_http_client,
)
from db_provisioner.adapters.outbound.resilient_fs import default_busy_policy
from db_provisioner.domain.errors import UnknownEngineError
from db_provisioner.domain.services import BinaryProvisioner, ContainerRegistry, VersionResolver
from db_provisioner.infrastructure.config import Config
from db_provisioner.infrastructure.logging import setup_logging
from db_provisioner.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from db_provisioner.infrastructure.tracing import setup_tracing
from db_provisioner.ports.outbound import LivenessOracle

T = TypeVar("T")


class Container:
    """
    Simple dependency injection container.

    Supports singleton and factory registrations with lazy initialization.
    """

    def __init__(self) -> None:
        self._singletons: dict[type, Any] = {}
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """
        Register a singleton instance.

        Args:
            interface: The interface/type to register
            instance: The singleton instance
        """
        self._singletons[interface] = instance
        self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory; the instance is built on first resolve().

        Args:
            interface: The interface/type to register
            factory: Function taking the container and returning an instance
        """
        self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a dependency.

        Raises:
            KeyError: If no registration exists for the interface
        """
        if interface in self._instances:
            return self._instances[interface]

        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return interface in self._instances or interface in self._factories

    def clear(self) -> None:
        """Clear all registrations and instances."""
        self._singletons.clear()
        self._factories.clear()
        self._instances.clear()


@dataclass
class ProvisionerSet:
    """Per-engine binary provisioners and version resolvers."""

    provisioners: dict[str, BinaryProvisioner]
    resolvers: dict[str, VersionResolver]

    def provisioner(self, engine: str) -> BinaryProvisioner:
        try:
            return self.provisioners[engine]
        except KeyError:
            raise UnknownEngineError(engine) from None

    def resolver(self, engine: str) -> VersionResolver:
        try:
            return self.resolvers[engine]
        except KeyError:
            raise UnknownEngineError(engine) from None


def _select_engines(engines: Iterable[str] | None) -> dict[str, EngineEntry]:
    if engines is None:
        return dict(BUILTIN_ENGINES)
    selected: dict[str, EngineEntry] = {}
    for engine in engines:
        if engine not in BUILTIN_ENGINES:
            raise UnknownEngineError(engine)
        selected[engine] = BUILTIN_ENGINES[engine]
    return selected


def build_container(
    config: Config,
    liveness: LivenessOracle | None = None,
    engines: Iterable[str] | None = None,
    metrics: MetricsRegistry | None = None,
    http_client_factory: HttpClientFactory = default_http_client,
) -> Container:
    """Wire the provisioner services for a configuration.

    Args:
        config: Provisioner configuration.
        liveness: Liveness oracle (default: PID-file oracle).
        engines: Engines to enable (default: every built-in engine).
        metrics: Metrics registry (default: global).
        http_client_factory: Builds httpx clients for index and downloads.

    Returns:
        A container resolving Config, MetricsRegistry, PortAllocator,
        ReleaseIndexClient, RegistryLock, ContainerStore, ContainerRegistry
        and ProvisionerSet.
    """
    catalog = _select_engines(engines)
    container = Container()
    container.register_singleton(Config, config)
    container.register_singleton(MetricsRegistry, metrics or get_metrics())

    container.register_factory(
        PortAllocator, lambda c: PortAllocator(config.paths, config.ports)
    )
    container.register_factory(
        ReleaseIndexClient,
        lambda c: ReleaseIndexClient(config.download, config.version_cache, http_client_factory),
    )
    container.register_factory(
        RegistryLock,
        lambda c: RegistryLock(
            config.paths.config_file.with_name(f"{config.paths.config_file.name}.lock"),
            config.lock,
            c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(ContainerStore, lambda c: ContainerStore(config.paths))

    def _registry(c: Container) -> ContainerRegistry:
        lock = c.resolve(RegistryLock)
        file_registries = {
            engine: FileRegistryStore(config.paths.config_file, engine, lock)
            for engine, entry in catalog.items()
            if entry.defaults.file_based
        }
        return ContainerRegistry(
            paths=config.paths,
            engines={engine: entry.defaults for engine, entry in catalog.items()},
            liveness=liveness or PidFileLivenessOracle(config.paths),
            port_allocator=c.resolve(PortAllocator),
            file_registries=file_registries,
            store=c.resolve(ContainerStore),
            fs_policy=default_busy_policy(config=config.filesystem),
            metrics=c.resolve(MetricsRegistry),
        )

    def _provisioners(c: Container) -> ProvisionerSet:
        index = c.resolve(ReleaseIndexClient)
        registry_metrics = c.resolve(MetricsRegistry)
        provisioners: dict[str, BinaryProvisioner] = {}
        resolvers: dict[str, VersionResolver] = {}
        for engine, entry in catalog.items():
            capability = entry.capability
            provisioner = BinaryProvisioner(capability, config, http_client_factory, registry_metrics)
            provisioners[engine] = provisioner
            resolvers[engine] = VersionResolver(
                engine=engine,
                index_source=index,
                list_installed=provisioner.list_installed_versions,
                version_map=capability.version_map,
                supported_majors=capability.supported_majors,
                grouping=capability.grouping,
                major_version_fn=capability.major_version_fn,
                ttl_seconds=config.version_cache.ttl_seconds,
                metrics=registry_metrics,
            )
        return ProvisionerSet(provisioners=provisioners, resolvers=resolvers)

    container.register_factory(ContainerRegistry, _registry)
    container.register_factory(ProvisionerSet, _provisioners)
    return container


def setup_observability(config: Config, serve_metrics: bool = False) -> None:
    """Configure logging and tracing from the observability settings.

    Args:
        config: Provisioner configuration.
        serve_metrics: Also start the Prometheus exporter on `metrics_port`.
    """
    observability = config.observability
    setup_logging(observability.log_level, observability.log_format)
    setup_tracing(observability)
    if serve_metrics:
        setup_metrics(observability.metrics_port)


# Global container instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container, wired from the global configuration."""
    global _container
    if _container is None:
        from db_provisioner.infrastructure.config import get_config

        _container = build_container(get_config())
    return _container


def reset_container() -> None:
    """Reset the global container (useful for testing)."""
    global _container
    if _container is not None:
        _container.clear()
    _container = None
