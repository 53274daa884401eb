from importlib import import_module

# Lazy import to avoid pulling in the runtime on package import

__version__ = "0.1.0"


def __getattr__(name):
    """Lazy-import top-level symbols to keep import footprint light.

    Currently supports:
    • ``MasterOrchestrator`` – defers the runtime import until requested.
    • Arbitrary first-level sub-modules (e.g. ``collabhub.schemas``).
    """
    if name == "MasterOrchestrator":
        return import_module("collabhub.runtime.orchestrator").MasterOrchestrator

    try:
        return import_module(f"collabhub.{name}")
    except ModuleNotFoundError:
        raise AttributeError(name) from None


__all__ = [
    "MasterOrchestrator",
    "__version__",
]
