# powerctl/clients/__init__.py
from .cluster_client import KubectlClient
from .notifier import WebhookNotifier

__all__ = ["KubectlClient", "WebhookNotifier"]
