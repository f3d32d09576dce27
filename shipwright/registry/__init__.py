"""Image registries: where assembled images are pushed and tags resolved."""

from shipwright.registry.base import PushResult, Registry
from shipwright.registry.filesystem import FilesystemRegistry

__all__ = ["Registry", "PushResult", "FilesystemRegistry"]
