"""Module declaration: futures, actions and the module builder."""

from .builder import Module, ModuleBuilder, build_module
from .loader import ModuleLoader, load_parameters
from .models import Action, ActionKind, Future, ModuleParameter

__all__ = [
    "Action",
    "ActionKind",
    "Future",
    "Module",
    "ModuleBuilder",
    "ModuleLoader",
    "ModuleParameter",
    "build_module",
    "load_parameters",
]
