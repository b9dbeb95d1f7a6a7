"""Generation Provider registry with entry-point auto-discovery.

Built-in providers are registered at module import time via the
``@register_provider`` decorator. Third-party providers from other packages
are discovered lazily on the first :meth:`GenerationProviderRegistry.get`
call via the ``token_wheel.providers`` entry-point group.
"""

from __future__ import annotations

import importlib.metadata
import inspect
import logging
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from token_wheel.config import TokenWheelConfig
    from token_wheel.generation.base import GenerationProvider

logger = logging.getLogger("token_wheel")

_ENTRY_POINT_GROUP = "token_wheel.providers"


def _accepts_config(cls: type) -> bool:
    """Check if a provider constructor takes the config as its first argument.

    Looks for a first parameter annotated as ``TokenWheelConfig`` or, when
    unannotated, named ``config``.
    """
    try:
        sig = inspect.signature(cls)
    except (ValueError, TypeError):
        return False

    for param in sig.parameters.values():
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            return param.name == "config"
        if isinstance(annotation, str):
            return "TokenWheelConfig" in annotation
        return getattr(annotation, "__name__", "") == "TokenWheelConfig"
    return False


class GenerationProviderRegistry:
    """Registry for Generation Provider classes.

    Discovery chain:

    1. Built-in providers registered via ``@register_provider`` decorator
    2. Third-party providers discovered via ``token_wheel.providers``
       entry points (loaded lazily on first ``get()`` call)
    """

    _registry: ClassVar[dict[str, type[GenerationProvider]]] = {}
    _entry_points_loaded: ClassVar[bool] = False

    @classmethod
    def register(
        cls, name: str
    ) -> Callable[[type[GenerationProvider]], type[GenerationProvider]]:
        """Decorator to register a provider class under a string key.

        Args:
            name: Unique identifier for the provider (e.g., ``'gemini'``).

        Returns:
            The original class, unmodified.
        """

        def decorator(provider_cls: type[GenerationProvider]) -> type[GenerationProvider]:
            cls._registry[name] = provider_cls
            return provider_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[GenerationProvider]:
        """Look up a provider class by name.

        Loads entry points on the first call if not already loaded.

        Raises:
            KeyError: If *name* is not found after loading entry points.
        """
        if name in cls._registry:
            return cls._registry[name]

        if not cls._entry_points_loaded:
            cls._load_entry_points()
            if name in cls._registry:
                return cls._registry[name]

        available = ", ".join(sorted(cls._registry.keys())) or "(none)"
        raise KeyError(f"Unknown generation provider: {name!r}. Available: {available}")

    @classmethod
    def build(cls, config: TokenWheelConfig) -> GenerationProvider:
        """Instantiate the provider named by ``config.provider_type``.

        The config is passed only when the constructor expects it.
        """
        provider_cls = cls.get(config.provider_type)
        if _accepts_config(provider_cls):
            return provider_cls(config)  # type: ignore[call-arg]
        return provider_cls()

    @classmethod
    def list_available(cls) -> list[str]:
        """Return all registered provider names, sorted.

        Triggers entry-point loading if not yet done.
        """
        if not cls._entry_points_loaded:
            cls._load_entry_points()
        return sorted(cls._registry.keys())

    @classmethod
    def _load_entry_points(cls) -> None:
        """Discover and register providers from the entry-point group.

        Errors during individual entry-point loading are logged as warnings
        but do not prevent other providers from loading.
        """
        cls._entry_points_loaded = True
        try:
            eps = importlib.metadata.entry_points(group=_ENTRY_POINT_GROUP)
        except Exception:  # Intentional: must not crash on broken metadata
            logger.warning("Failed to load entry points for %s", _ENTRY_POINT_GROUP, exc_info=True)
            return

        for ep in eps:
            if ep.name in cls._registry:
                # Built-in decorator registration takes precedence.
                continue
            try:
                cls._registry[ep.name] = ep.load()
                logger.debug("Loaded generation provider %r from entry point", ep.name)
            except Exception:  # Intentional: one bad plugin must not block others
                logger.warning(
                    "Failed to load generation provider entry point %r: %s",
                    ep.name,
                    ep.value,
                    exc_info=True,
                )

    @classmethod
    def _reset(cls) -> None:
        """Reset registry state. **Test-only**, not part of public API."""
        cls._registry.clear()
        cls._entry_points_loaded = False


register_provider = GenerationProviderRegistry.register


def build_provider(config: TokenWheelConfig) -> GenerationProvider:
    """Build the provider selected by *config*."""
    return GenerationProviderRegistry.build(config)
