"""Azure driver for wni.

NOTE: Only the config class is imported at package level to avoid loading
the Azure SDK. For the driver, import explicitly:

    from wni.providers.azure.driver import AzureDriver
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .driver import AzureDriver

from .config import Azure

__all__ = ["Azure"]
