"""Image storage module for chat attachments.

Images are uploaded to an S3-compatible bucket (MinIO in development) and
referenced from chat messages by URL.
"""

from .service import ImageStorageService, extension_from_filename

__all__ = ["ImageStorageService", "extension_from_filename"]
