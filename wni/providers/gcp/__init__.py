"""GCP Compute Engine driver for wni.

NOTE: Only the config class is imported at package level to avoid loading
the Google SDK. For the driver, import explicitly:

    from wni.providers.gcp.driver import GCPDriver
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .driver import GCPDriver

from .config import GCP

__all__ = ["GCP"]
