"""Shipwright: cached container builds published under deterministic tags.

A build-and-publish pipeline for compiled applications:
  - Dependency pre-build keyed by the manifest hash alone
  - Source build with a compile cache keyed by the full source identity
  - Minimal runtime image with a pinned TLS policy
  - latest / date / short-revision tags, published all-or-nothing
  - Sealed, two-slot build cache rotated only after a successful publish
  - Hash-chained run ledger of every phase transition
"""

__version__ = "0.1.0"

from shipwright.core.orchestrator import Orchestrator

__all__ = ["Orchestrator", "__version__"]
