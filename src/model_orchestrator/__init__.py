"""Multi-provider model orchestration: routing, health, cost and failover."""

__version__ = "1.0.0"
__author__ = "Model Orchestrator Contributors"


def get_version():
    return __version__


__all__ = ["__version__", "__author__", "get_version"]
