"""Common utilities shared between controller entry points."""

from .kube import init_custom_api
from .resource_watch import ResourceWatcher

__all__ = [
    'ResourceWatcher',
    'init_custom_api',
]
