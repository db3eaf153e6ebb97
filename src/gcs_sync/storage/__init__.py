"""Remote storage client and credential handling."""

from .cloud_storage import CloudStorageManager, create_gcs_manager_from_config
from .credential_resolver import GCSCredentialResolver, load_service_account_file

__all__ = [
    "CloudStorageManager",
    "create_gcs_manager_from_config",
    "GCSCredentialResolver",
    "load_service_account_file",
]
