"""
Service Registry with lazy loading
Factory-based registration with dependency resolution and lifecycle management
"""
from typing import Dict, Any, Callable, Optional, Set, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # Single instance per application
    TRANSIENT = "transient"  # New instance per request
    SCOPED = "scoped"       # Single instance per scope


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(
        self,
        name: str,
        factory: Optional[Callable] = None,
        instance: Optional[Any] = None,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None,
        tags: Optional[Set[str]] = None
    ):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.tags = tags or set()
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Service registry resolving the engine's repositories and services.

    Services are created on first use from their factory, with the services
    they depend on passed in as keyword arguments. Re-registering a name
    replaces the earlier registration, which is how tests swap in fakes for
    the channel gateway or the notification transport.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        service: Any = None,
        factory: Callable = None,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None,
        tags: Optional[Set[str]] = None
    ) -> None:
        """
        Register a service instance or factory.

        Args:
            name: Service identifier
            service: Pre-instantiated service
            factory: Factory function for lazy loading
            lifecycle: Service lifecycle type
            dependencies: Names of the services the factory receives
            tags: Set of tags for categorization
        """
        if service is None and factory is None:
            raise ValueError(f"Either service instance or factory must be provided for '{name}'")

        descriptor = ServiceDescriptor(
            name=name,
            factory=factory,
            instance=service,
            lifecycle=lifecycle,
            dependencies=dependencies,
            tags=tags
        )

        with self._lock:
            self._descriptors[name] = descriptor
            for scope in self._scoped_instances.values():
                scope.pop(name, None)

    def register_factory(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None,
        tags: Optional[Set[str]] = None
    ) -> None:
        """Register a factory function for lazy service instantiation."""
        self.register(
            name=name,
            factory=factory,
            lifecycle=lifecycle,
            dependencies=dependencies,
            tags=tags
        )

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        """Register a singleton service factory"""
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def register_transient(self, name: str, factory: Callable, **kwargs) -> None:
        """Register a transient service factory"""
        self.register_factory(name, factory, ServiceLifecycle.TRANSIENT, **kwargs)

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Get a service by name, creating it and its dependencies on first use.

        Raises:
            ValueError: If service is not registered
            RuntimeError: If circular dependency detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]

        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []

        if name in self._thread_local.initialization_stack:
            cycle = " -> ".join(self._thread_local.initialization_stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        if descriptor.lifecycle == ServiceLifecycle.SINGLETON:
            return self._get_singleton(descriptor)
        elif descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)
        elif descriptor.lifecycle == ServiceLifecycle.SCOPED:
            return self._get_scoped(descriptor, scope_id)

        raise ValueError(f"Unknown lifecycle: {descriptor.lifecycle}")

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.instance is not None:
            return descriptor.instance

        with descriptor.lock:
            # Double-check pattern
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: Optional[str]) -> Any:
        if scope_id is None:
            scope_id = "default"

        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})

        if descriptor.name not in scope:
            scope[descriptor.name] = self._create_instance(descriptor)
        return scope[descriptor.name]

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        self._thread_local.initialization_stack.append(descriptor.name)
        try:
            if descriptor.dependencies:
                deps = {dep: self.get(dep) for dep in descriptor.dependencies}
                instance = descriptor.factory(**deps)
            else:
                instance = descriptor.factory()

            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            self._thread_local.initialization_stack.pop()

    def has(self, name: str) -> bool:
        """Check if a service is registered"""
        return name in self._descriptors

    def reset_service(self, name: str) -> None:
        """Reset a service and everything built on it, forcing re-instantiation on next get"""
        stale = {name}
        changed = True
        while changed:
            changed = False
            for other, descriptor in self._descriptors.items():
                if other not in stale and stale.intersection(descriptor.dependencies):
                    stale.add(other)
                    changed = True

        for stale_name in stale:
            descriptor = self._descriptors.get(stale_name)
            if descriptor is not None and descriptor.factory is not None:
                with descriptor.lock:
                    descriptor.instance = None
        with self._lock:
            for scope in self._scoped_instances.values():
                for stale_name in stale:
                    scope.pop(stale_name, None)

    def clear_scope(self, scope_id: str) -> None:
        """Clear all services in a specific scope"""
        with self._lock:
            self._scoped_instances.pop(scope_id, None)

    def validate_dependencies(self) -> List[str]:
        """
        Validate all service dependencies are registered.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors

    def get_initialization_order(self) -> List[str]:
        """
        Calculate the initialization order based on dependencies (topological sort).

        Raises:
            RuntimeError: If circular dependency exists
        """
        graph = {name: list(d.dependencies) for name, d in self._descriptors.items()}
        visited = set()
        stack = []

        def visit(node: str, path: List[str]):
            if node in path:
                cycle = " -> ".join(path + [node])
                raise RuntimeError(f"Circular dependency detected: {cycle}")
            if node in visited:
                return
            for dep in graph.get(node, []):
                visit(dep, path + [node])
            visited.add(node)
            stack.append(node)

        for service in graph:
            if service not in visited:
                visit(service, [])

        return stack


def create_registry() -> ServiceRegistry:
    """Factory function to create the service registry."""
    return ServiceRegistry()
