"""
shipyard.build - Build orchestration for multi-workspace projects.

Provides dependency resolution, batched parallel builds with staged
outputs, source-hash caching and artifact publishing.
"""

from shipyard.build.config import (
    Workspace,
    WorkspaceGraph,
    PublishSpec,
    ServeSettings,
    ProjectConfig,
    BuildConfig,
    load_config,
    load_project,
)
from shipyard.build.resolver import (
    BuildPlan,
    resolve_build_plan,
    dependents_closure,
)
from shipyard.build.runner import (
    BuildStatus,
    BuildResult,
    PipelineReport,
    PipelineRunner,
)
from shipyard.build.publish import publish_artifacts, publish_project
from shipyard.build.orchestrator import BuildOrchestrator

__all__ = [
    # Data classes
    "Workspace",
    "WorkspaceGraph",
    "PublishSpec",
    "ServeSettings",
    "ProjectConfig",
    "BuildConfig",
    "BuildPlan",
    "BuildStatus",
    "BuildResult",
    "PipelineReport",
    # Functions
    "load_config",
    "load_project",
    "resolve_build_plan",
    "dependents_closure",
    "publish_artifacts",
    "publish_project",
    # Runners
    "PipelineRunner",
    "BuildOrchestrator",
]
