"""
FastAPI application for the catalog import and search service.

This package contains the REST API for importing CATMAT / CATSER
spreadsheets, searching the catalogs and tracking background imports.
"""

__version__ = "1.0.0"
