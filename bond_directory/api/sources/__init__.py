"""
Upstream Sources Package

This package contains the NSDL IndiaBondInfo client.
"""

from .nsdl import Dataset, NSDLBondClient

__all__ = [
    "Dataset",
    "NSDLBondClient"
]
