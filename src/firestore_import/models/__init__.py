from .schemas import (
    COLLECTIONS_KEY,
    DATATYPE_KEY,
    ImportOptions,
    ImportStats,
    ServiceAccountCredentials,
)

__all__ = [
    'COLLECTIONS_KEY',
    'DATATYPE_KEY',
    'ImportOptions',
    'ImportStats',
    'ServiceAccountCredentials',
]
