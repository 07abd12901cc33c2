"""OSD pipeline synthesis.

properties -> TopologyClassifier -> ContainerPipelineBuilder -> ExecutionPlan
"""

from .bridges import MountBridge, VolumeBindingResolver, bridge_name
from .keyflow import EncryptionKeyFlow, KeyState, KeyStepFactory
from .pipeline import ContainerPipelineBuilder, deployment_name
from .plan import ExecutionPlan, PipelineStep, VolumeDevice, VolumeMount, compute_spec_hash
from .properties import DaemonProperties
from .scripts import CONTRACTS, ShellContract
from .topology import (
    ActivationMode,
    KeySource,
    KeySourceKind,
    ProvisioningMode,
    StorageTopology,
    TopologyClassifier,
)

__all__ = [
    "ActivationMode",
    "CONTRACTS",
    "ContainerPipelineBuilder",
    "DaemonProperties",
    "EncryptionKeyFlow",
    "ExecutionPlan",
    "KeySource",
    "KeySourceKind",
    "KeyState",
    "KeyStepFactory",
    "MountBridge",
    "PipelineStep",
    "ProvisioningMode",
    "ShellContract",
    "StorageTopology",
    "TopologyClassifier",
    "VolumeBindingResolver",
    "VolumeDevice",
    "VolumeMount",
    "bridge_name",
    "compute_spec_hash",
    "deployment_name",
]
