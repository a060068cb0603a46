"""HTTP clients for talking to a running conversion service."""

from app.clients.conversion_client import ConversionClient, ConvertedFile

__all__ = [
    "ConversionClient",
    "ConvertedFile",
]
