"""
Probe Demo - Kubernetes 探针演示服务
"""
__version__ = "1.0.0"
