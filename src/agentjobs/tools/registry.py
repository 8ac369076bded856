"""Registry that keeps track of available tools."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Iterable, Iterator, List, Set

from ..config import ToolSpec, instantiate_from_path
from .base import Tool

LOGGER = logging.getLogger(__name__)

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Stores tool factories and lazily instantiates them when requested."""

    def __init__(self) -> None:
        self._factories: Dict[str, ToolFactory] = {}
        self._instances: Dict[str, Tool] = {}
        self._shared: Set[str] = set()

    def register_instance(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._instances and not overwrite:
            raise ValueError(f"Tool {tool.name} already registered")
        self._instances[tool.name] = tool
        self._shared.add(tool.name)

    def register_factory(self, name: str, factory: ToolFactory, *, overwrite: bool = False) -> None:
        if name in self._factories and not overwrite:
            raise ValueError(f"Tool factory {name} already registered")
        self._factories[name] = factory
        self._instances.pop(name, None)
        self._shared.discard(name)

    def register_from_spec(self, spec: ToolSpec) -> None:
        def factory() -> Tool:
            instance = instantiate_from_path(spec.type, name=spec.name, **spec.args)
            if not isinstance(instance, Tool):  # pragma: no cover - guard
                raise TypeError(f"Tool '{spec.name}' must inherit Tool")
            return instance

        self.register_factory(spec.name, factory, overwrite=True)

    def configure_from_specs(self, specs: Dict[str, ToolSpec]) -> None:
        for spec in specs.values():
            self.register_from_spec(spec)

    def discover_entrypoints(self, group: str = "agentjobs.tools") -> None:
        """Register tool factories declared as entry points under ``group``.

        An entry point may name a Tool subclass (instantiated with ``name=``) or a
        callable returning a Tool. The entry point name becomes the registry key.
        Entry points that fail to load are logged and skipped.
        """
        for ep in entry_points(group=group):
            try:
                target = ep.load()
            except Exception:
                LOGGER.warning("Skipping tool entry point %s: failed to load", ep.name, exc_info=True)
                continue

            def make_factory(target_obj: Any, entry_name: str) -> ToolFactory:
                def factory() -> Tool:
                    if isinstance(target_obj, type):
                        return target_obj(name=entry_name)
                    instance = target_obj()
                    if not isinstance(instance, Tool):
                        raise TypeError(f"Entry point {entry_name} did not produce a Tool instance")
                    return instance

                return factory

            if ep.name in self:
                LOGGER.warning("Skipping tool entry point %s: name already registered", ep.name)
                continue
            self.register_factory(ep.name, make_factory(target, ep.name))

    def create(self, name: str) -> Tool:
        """Return a new instance for one execution, or the shared instance if one was registered."""
        if name in self._shared:
            return self._instances[name]
        if name not in self._factories:
            raise KeyError(f"Tool {name} not registered")
        return self._factories[name]()

    def __contains__(self, name: str) -> bool:
        return name in self._instances or name in self._factories

    def names(self) -> List[str]:
        return sorted(set(self._instances) | set(self._factories))

    def available(self) -> Dict[str, Tool]:
        for name in list(self._factories.keys()):
            if name not in self._instances:
                self._instances[name] = self._factories[name]()
        return dict(self._instances)

    @contextmanager
    def acquire(self, names: Iterable[str]) -> Iterator[Dict[str, Tool]]:
        """Connect the named tools for one execution and always disconnect them.

        Factory-built tools are instantiated per call, so an abandoned execution
        cannot disconnect tools a later one is using. Instances passed to
        :meth:`register_instance` are shared as given. Tools are connected in
        the given order and disconnected in reverse, on success and on failure
        alike. A disconnect error is logged so it cannot mask the error of the
        execution itself.
        """
        connected: List[Tool] = []
        try:
            tools: Dict[str, Tool] = {}
            for name in names:
                tool = self.create(name)
                tool.connect()
                connected.append(tool)
                tools[name] = tool
            yield tools
        finally:
            for tool in reversed(connected):
                try:
                    tool.disconnect()
                except Exception:
                    LOGGER.exception("Failed to disconnect tool %s", tool.name)
