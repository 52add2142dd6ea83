"""Cloud Storage delivery for rendered storyboard videos: upload, then hand out a time-limited link."""

import os
from datetime import datetime, timedelta, timezone

DEFAULT_BUCKET = "storyboard-media"
VIDEO_EXPIRATION_SECONDS = 48 * 3600  # 48 hours


def get_bucket_name() -> str:
    """``GCS_BUCKET`` when set, otherwise the default exports bucket."""
    return os.environ.get("GCS_BUCKET", "").strip() or DEFAULT_BUCKET


def video_blob_name(project_id: str, filename: str) -> str:
    """Exports are grouped per project: ``projects/<project_id>/<filename>``."""
    return f"projects/{project_id}/{filename}"


def _blob(blob_name: str, bucket_name: str | None):
    # Imported lazily so the API starts without Cloud credentials.
    from google.cloud import storage

    return storage.Client().bucket(bucket_name or get_bucket_name()).blob(blob_name)


def upload_blob(
    blob_name: str,
    data: bytes,
    *,
    content_type: str = "video/mp4",
    bucket_name: str | None = None,
) -> None:
    """Store an encoded video under ``blob_name``, tagged with its container MIME type."""
    _blob(blob_name, bucket_name).upload_from_string(data, content_type=content_type)


def generate_signed_url(
    blob_name: str,
    *,
    bucket_name: str | None = None,
    expiration_seconds: int = VIDEO_EXPIRATION_SECONDS,
    method: str = "GET",
) -> str:
    """
    V4 signed link to ``blob_name`` that stops working after ``expiration_seconds``.

    Signing relies on Application Default Credentials, so the service account
    needs permission to sign blobs.
    """
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=expiration_seconds)
    return _blob(blob_name, bucket_name).generate_signed_url(
        expiration=expires_at,
        method=method,
        version="v4",
    )


def publish_video(project_id: str, filename: str, data: bytes, content_type: str) -> str:
    """Upload an export and return a signed download URL for it."""
    blob_name = video_blob_name(project_id, filename)
    upload_blob(blob_name, data, content_type=content_type)
    return generate_signed_url(blob_name)
