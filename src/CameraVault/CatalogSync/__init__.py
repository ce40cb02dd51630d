"""
CatalogSync: scheduled ingestion and sync engine for the CameraVault catalog.

Discovers camera records from configured sources, normalises them into
canonical :class:`~CameraVault.CatalogSync.catalog.models.CameraRecord` rows,
merges them into the SQLite catalog, enriches entries with cached images and
thumbnails, and keeps timestamped catalog snapshots.

Entry points:
    - :func:`CameraVault.CatalogSync.bootstrap.build_engine` wires collaborators
    - :func:`CameraVault.CatalogSync.bootstrap.build_scheduler` registers jobs
    - ``cameravault`` console script (:mod:`CameraVault.CatalogSync.cli`)
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
