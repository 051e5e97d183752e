"""
kuberules: policy rules persisted as Kubernetes-style Rule objects.
"""

__version__ = "1.0.0"
