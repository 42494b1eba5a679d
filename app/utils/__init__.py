"""Utility helpers for the StreamVault backend.

Submodules:
- aws: boto3 S3 client used for presigned media URLs
- clock: timezone-aware time helpers
"""

__all__: list[str] = []
