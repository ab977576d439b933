"""Per-controller aggregate state and the registry that owns it."""
from .controller import Controller, LinkType
from .registry import ControllerRegistry

__all__ = [
    "Controller",
    "LinkType",
    "ControllerRegistry",
]
