"""Google Cloud Storage manager used as the remote store for sync jobs."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Type

from google.api_core import exceptions as gapi_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from gcs_sync.errors import (
    AuthError,
    ConfigurationError,
    ErrorCategory,
    GcsSyncError,
    PreflightError,
    TransferError,
    TransientStorageError,
    categorize_error,
    is_retryable,
)
from gcs_sync.services.reconcile import is_valid_key
from gcs_sync.services.sync_types import LocalFile, RemoteDestination, RemoteObject
from gcs_sync.storage.credential_resolver import load_service_account_file, validate_credentials_dict

# Object metadata key gsutil rsync uses to preserve the source file mtime
MTIME_METADATA_KEY = "goog-reserved-file-mtime"
BOOTSTRAP_MARKER = ".gcs-sync-bootstrap"


def _translate(exc: Exception, message: str, default_cls: Type[GcsSyncError], key: Optional[str] = None) -> GcsSyncError:
    """Map an SDK exception onto the gcs-sync error taxonomy."""
    if categorize_error(exc) is ErrorCategory.AUTH:
        return AuthError(f"{message}: {exc}", key=key)
    if is_retryable(exc):
        return TransientStorageError(f"{message}: {exc}", key=key)
    return default_cls(f"{message}: {exc}", key=key)


class CloudStorageManager:
    """
    Manages list/put/delete operations against Google Cloud Storage.

    One manager serves every configured pair; buckets are resolved per
    destination. The underlying client is shared read-only across worker threads.
    """

    def __init__(
        self,
        credentials_dict: Optional[Dict[str, Any]] = None,
        credentials_path: Optional[Path] = None,
        client: Optional[Any] = None,
        logger_obj: Optional[logging.Logger] = None
    ):
        """
        Initialize GCS manager.

        Args:
            credentials_dict: Service account credentials as dict
            credentials_path: Path to service account JSON file
            client: Pre-built storage client (tests and custom transports)
            logger_obj: Logger instance
        """
        self.logger = logger_obj or logging.getLogger(__name__)

        if client is not None:
            self.credentials = None
            self.client = client
            return

        if credentials_path and not credentials_dict:
            credentials_dict = load_service_account_file(credentials_path)

        if credentials_dict:
            validate_credentials_dict(credentials_dict)
            try:
                self.credentials = service_account.Credentials.from_service_account_info(
                    credentials_dict
                )
            except ValueError as exc:
                raise ConfigurationError(f"Unusable service account key: {exc}") from exc
            project = credentials_dict.get("project_id")
        else:
            # Use default credentials (from environment)
            self.credentials = None
            project = None

        self.client = storage.Client(project=project, credentials=self.credentials)
        self.logger.info(
            f"Initialized CloudStorageManager as "
            f"{getattr(self.credentials, 'service_account_email', 'default credentials')}"
        )

    def _bucket(self, destination: RemoteDestination):
        return self.client.bucket(destination.bucket)

    def probe(self, destination: RemoteDestination) -> bool:
        """
        Check that the destination is reachable.

        Returns:
            True if at least one object exists under the prefix, False if the prefix is empty

        Raises:
            AuthError: Credentials rejected
            PreflightError: Bucket does not exist or cannot be listed
            TransientStorageError: Retryable failure
        """
        try:
            blobs = self.client.list_blobs(
                destination.bucket, prefix=destination.list_prefix, max_results=1
            )
            return any(True for _ in blobs)
        except gapi_exceptions.NotFound as exc:
            raise PreflightError(f"Bucket gs://{destination.bucket} does not exist") from exc
        except Exception as exc:
            raise _translate(exc, f"Cannot list {destination.uri}", PreflightError) from exc

    def list_objects(self, destination: RemoteDestination) -> Dict[str, RemoteObject]:
        """
        List every object under the destination prefix.

        Args:
            destination: Bucket and prefix to list

        Returns:
            Dictionary mapping keys relative to the prefix to RemoteObject
        """
        objects: Dict[str, RemoteObject] = {}
        try:
            for blob in self.client.list_blobs(destination.bucket, prefix=destination.list_prefix):
                # Skip directory markers
                if blob.name.endswith("/"):
                    continue

                key = destination.relative_key(blob.name)
                if key == BOOTSTRAP_MARKER:
                    continue
                if not is_valid_key(key):
                    # Legal in GCS but has no local counterpart path
                    self.logger.warning(
                        f"Ignoring gs://{destination.bucket}/{blob.name}: name cannot map to a local path"
                    )
                    continue

                objects[key] = RemoteObject(
                    key=key,
                    size=int(blob.size or 0),
                    md5=blob.md5_hash,
                    mtime=self._recorded_mtime(blob),
                    updated=blob.updated,
                )
        except gapi_exceptions.NotFound as exc:
            raise PreflightError(f"Bucket gs://{destination.bucket} does not exist") from exc
        except Exception as exc:
            raise _translate(exc, f"Error listing {destination.uri}", PreflightError) from exc

        self.logger.debug(f"Listed {len(objects)} objects under {destination.uri}")
        return objects

    def _recorded_mtime(self, blob) -> Optional[float]:
        metadata = blob.metadata or {}
        value = metadata.get(MTIME_METADATA_KEY)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            self.logger.debug(f"Ignoring malformed mtime metadata on {blob.name}: {value!r}")
            return None

    def put(self, local_file: LocalFile, destination: RemoteDestination, key: str) -> None:
        """
        Upload a single file, recording its mtime in object metadata.

        Raises:
            AuthError, TransientStorageError, TransferError
        """
        object_name = destination.key_for(key)
        try:
            blob = self._bucket(destination).blob(object_name)
            blob.metadata = {MTIME_METADATA_KEY: str(int(local_file.mtime))}
            blob.upload_from_filename(str(local_file.path))
        except Exception as exc:
            raise _translate(exc, f"Error uploading {local_file.path}", TransferError, key=key) from exc

        self.logger.debug(f"Uploaded {local_file.path} to gs://{destination.bucket}/{object_name}")

    def delete(self, destination: RemoteDestination, key: str) -> None:
        """
        Delete a single object. Deleting an object that is already gone succeeds.

        Raises:
            AuthError, TransientStorageError, TransferError
        """
        object_name = destination.key_for(key)
        try:
            self._bucket(destination).blob(object_name).delete()
        except gapi_exceptions.NotFound:
            self.logger.debug(f"Object already absent: gs://{destination.bucket}/{object_name}")
            return
        except Exception as exc:
            raise _translate(exc, f"Error deleting gs://{destination.bucket}/{object_name}", TransferError, key=key) from exc

        self.logger.debug(f"Deleted gs://{destination.bucket}/{object_name}")

    def bootstrap_prefix(self, destination: RemoteDestination) -> None:
        """
        Materialize a prefix by writing then deleting a zero-byte marker object.

        Raises:
            AuthError: Credentials rejected
            PreflightError: Marker could not be written or removed
        """
        marker = self._bucket(destination).blob(destination.key_for(BOOTSTRAP_MARKER))
        try:
            marker.upload_from_string(b"")
            marker.delete()
        except Exception as exc:
            raise _translate(exc, f"Cannot bootstrap {destination.uri}", PreflightError) from exc

        self.logger.info(f"Bootstrapped remote prefix {destination.uri}")


def create_gcs_manager_from_config(
    config: Any,
    logger_obj: Optional[logging.Logger] = None
) -> CloudStorageManager:
    """
    Create CloudStorageManager from a SyncConfig (or anything with ``credentials_path``).

    The key file is re-read on every call so rotated credentials are picked up.

    Raises:
        ConfigurationError: If the credentials file is missing or malformed
    """
    logger = logger_obj or logging.getLogger(__name__)
    credentials_path = getattr(config, "credentials_path", None)
    if credentials_path is None:
        raise ConfigurationError("No credentials path configured")

    return CloudStorageManager(
        credentials_path=Path(credentials_path),
        logger_obj=logger
    )
