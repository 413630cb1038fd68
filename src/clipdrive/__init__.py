"""clipdrive - Resilient markdown upload to Google Drive.

This package delivers rendered markdown documents into a Google Drive folder
hierarchy, with token refresh, idempotent folder creation and retrying
transport.
"""

__version__ = "0.1.0"
__author__ = "clipdrive Team"

__all__ = [
    "__version__",
    "__author__",
]
