from .gcs import generate_signed_url, get_bucket_name, upload_blob

__all__ = ["generate_signed_url", "get_bucket_name", "upload_blob"]
