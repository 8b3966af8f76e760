"""
Kube Actions - run named container actions as Kubernetes Jobs.

This package provides tools for:
- Loading action definitions (containers, timeout, fail-fast) from YAML
- Composing Job manifests from a template, overrides and run-scoped defaults
- Binding containers to the images built in the current run
- Executing actions concurrently with timeout and fail-fast policies
"""

__version__ = "0.1.0"
