"""Registry of pluggable classes found by scanning a package."""

import pkgutil
import importlib
import inspect
import logging
from typing import Dict, Type, TypeVar, Generic, List, Optional

logger = logging.getLogger('gitatlas')

T = TypeVar('T')


class Registry(Generic[T]):
    """Map names to concrete subclasses of ``base_class`` defined in ``package``.

    Modules are imported on first lookup, so a registry can be created in
    the ``__init__`` of the package it scans. A class is registered under
    its ``name`` attribute; classes without one and abstract classes are
    ignored.

    Example usage:
        policy_registry = Registry(HeadPolicy, 'gitatlas.policies', exclude=['base'])
        policy_registry.get_or_raise('canonical')
    """

    def __init__(self, base_class: Type[T], package: str, exclude: Optional[List[str]] = None):
        self._base_class = base_class
        self._package = package
        self._exclude = set(exclude or [])
        self._classes: Optional[Dict[str, Type[T]]] = None

    @property
    def kind(self) -> str:
        return self._base_class.__name__

    def _loaded(self) -> Dict[str, Type[T]]:
        if self._classes is None:
            self._classes = self._scan_package()
        return self._classes

    def _scan_package(self) -> Dict[str, Type[T]]:
        package = importlib.import_module(self._package)
        found: Dict[str, Type[T]] = {}

        for module_info in pkgutil.iter_modules(package.__path__):
            if module_info.name in self._exclude:
                continue
            module = importlib.import_module(f'{self._package}.{module_info.name}')
            for _, cls in inspect.getmembers(module, inspect.isclass):
                if cls.__module__ != module.__name__:
                    continue
                if not issubclass(cls, self._base_class) or inspect.isabstract(cls):
                    continue
                name = getattr(cls, 'name', None)
                if not name:
                    continue
                if name in found:
                    raise ValueError(
                        f"{self.kind} name '{name}' defined by both "
                        f"{found[name].__module__} and {module.__name__}"
                    )
                found[name] = cls

        logger.debug(f"Loaded {len(found)} {self.kind} class(es) from {self._package}")
        return found

    def get_or_raise(self, name: str) -> Type[T]:
        """Look up a class by name.

        Raises:
            KeyError: If no class has that name
        """
        classes = self._loaded()
        if name not in classes:
            raise KeyError(f"Unknown {self.kind}: {name}. Available: {', '.join(sorted(classes))}")
        return classes[name]

    def list_names(self) -> List[str]:
        return sorted(self._loaded())

    def get_all(self) -> Dict[str, Type[T]]:
        return dict(sorted(self._loaded().items()))

    def __contains__(self, name: str) -> bool:
        return name in self._loaded()
