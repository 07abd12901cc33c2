"""cephplan - plan and reconcile Ceph daemon deployments.

Planning is pure: properties go through TopologyClassifier and
ContainerPipelineBuilder (or MirrorPlanBuilder) into an ExecutionPlan.
Only DeploymentReconciler talks to a cluster.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("cephplan")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

from .config import PlannerConfig, load_config
from .main import main
from .mirror import MirrorPlanBuilder, MirrorSpec
from .osd import ContainerPipelineBuilder, DaemonProperties, ExecutionPlan, TopologyClassifier
from .reconcile import DeploymentReconciler

__all__ = [
    "ContainerPipelineBuilder",
    "DaemonProperties",
    "DeploymentReconciler",
    "ExecutionPlan",
    "MirrorPlanBuilder",
    "MirrorSpec",
    "PlannerConfig",
    "TopologyClassifier",
    "load_config",
    "main",
    "__version__",
]
