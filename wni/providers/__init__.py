"""Cloud drivers for wni."""

from wni.providers.base import CloudDriver

__all__ = ["CloudDriver"]
