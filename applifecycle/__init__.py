"""Reconcile Application resources into Deployments, Services and Ingresses."""

__version__ = "0.1.0"

__all__ = ["api", "conditions", "client", "resources", "components", "reconciler"]