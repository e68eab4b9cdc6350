"""
Services package: registries, the artifact lifecycle manager, simulation
and installation.
"""

from authrules.services.claims import ClaimRegistry
from authrules.services.lifecycle import ArtifactLifecycleManager, CompileReport
from authrules.services.rules import RuleRegistry

__all__ = ["ArtifactLifecycleManager", "ClaimRegistry", "CompileReport", "RuleRegistry"]
