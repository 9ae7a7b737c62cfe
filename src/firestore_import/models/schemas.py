"""
Data models for firestore-import
Command-line options, service account credentials and import statistics
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional


# Reserved keys in the backup file format
COLLECTIONS_KEY = "__collections__"
DATATYPE_KEY = "__datatype__"


class ImportOptions(BaseModel):
    """Resolved command-line state for one import run"""
    model_config = ConfigDict(extra='forbid')

    account_credentials_path: str
    backup_file: str
    node_path: Optional[str] = None
    unattended_confirmation: bool = False

    @field_validator('node_path')
    @classmethod
    def blank_node_path_means_root(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class ServiceAccountCredentials(BaseModel):
    """Google Cloud service account key file"""
    # Unknown keys are handed to the Admin SDK unchanged
    model_config = ConfigDict(extra='allow')

    project_id: str
    type: Optional[str] = None
    client_email: Optional[str] = None
    private_key: Optional[str] = None

    @field_validator('project_id')
    @classmethod
    def project_id_not_blank(cls, v):
        if not v.strip():
            raise ValueError("project_id must not be empty")
        return v


class ImportStats(BaseModel):
    documents_written: int = Field(default=0, ge=0)
    batches_committed: int = Field(default=0, ge=0)
    collections_visited: int = Field(default=0, ge=0)
