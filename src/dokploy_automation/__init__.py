"""Dokploy install and hardening automation."""

from .inventory import InventoryResolver
from .roles import PlaybookComposer
from .runner import TaskRunner

__all__ = ["TaskRunner", "InventoryResolver", "PlaybookComposer"]
