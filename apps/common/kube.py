"""Kubernetes client setup shared by the controller entry points."""

from __future__ import annotations

from kubernetes import client, config as k8s_config
from kubernetes.config.config_exception import ConfigException


def init_custom_api() -> client.CustomObjectsApi:
    """Load in-cluster config, falling back to kubeconfig.

    Raises:
        ConfigException: If neither configuration can be loaded
    """
    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        k8s_config.load_kube_config()
    return client.CustomObjectsApi()
