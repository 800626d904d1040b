from .client import BuildOptions, DaemonClient, HttpDaemonClient, ImageSummary

__all__ = ["BuildOptions", "DaemonClient", "HttpDaemonClient", "ImageSummary"]
