"""Pipeline error taxonomy.

Every failure a run can end in maps onto one of these classes. All of them
are fatal except ``CachePromotionError``: an image that was already pushed
stays published, and the next run simply starts with a cold cache.
"""

from __future__ import annotations


class ShipwrightError(RuntimeError):
    """Base class for every pipeline failure."""

    fatal: bool = True


class DependencyResolutionError(ShipwrightError):
    """Raised when the dependency manifest cannot be resolved or compiled."""


class CompileError(ShipwrightError):
    """Raised when the application source fails to compile."""


class ArtifactMissingError(ShipwrightError):
    """Raised when a stage expects the compiled binary and there is none."""


class ImageAssemblyError(ShipwrightError):
    """Raised when the runtime image cannot be assembled or hardened."""


class TagCollisionError(ShipwrightError):
    """Raised when two distinct revisions map to the same revision tag."""


class RegistryPushError(ShipwrightError):
    """Raised when the image cannot be pushed to the registry."""


class CachePromotionError(ShipwrightError):
    """Raised when the freshly built cache cannot replace the active one.

    Recoverable: the next run detects the incomplete rotation and cold-starts.
    """

    fatal = False


class InvalidTransitionError(ShipwrightError):
    """Raised when a requested phase transition is not valid."""
