"""
Bond directory ingestion core

Resilient ingestion of bond and issuer reference data from NSDL IndiaBondInfo.
"""

__version__ = "1.0.0"
