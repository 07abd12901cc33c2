"""CLI command groups."""

from .classify import classify
from .config import config
from .kms import kms
from .plan import plan
from .reconcile import reconcile

__all__ = ["classify", "config", "kms", "plan", "reconcile"]
