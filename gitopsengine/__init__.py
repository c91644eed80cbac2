"""Health assessment, sync vocabulary and manifest diffing for Kubernetes resources held as dictionaries."""

__version__ = "0.1.0"