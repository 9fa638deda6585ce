"""Build Cloud Monitoring queries from Kubernetes metric requests and translate the time series returned."""

__version__ = "0.1.0"