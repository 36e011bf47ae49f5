"""Runtime engine exports."""

from .loop import RuntimeBootstrap, RuntimeEngine, RuntimeHooks, UICommandReceived

__all__ = ["RuntimeBootstrap", "RuntimeEngine", "RuntimeHooks", "UICommandReceived"]
