"""Restore JSON backups into Cloud Firestore"""

__version__ = "1.0.0"
