"""
Document storage in the backend's buckets.

``profile-photos`` is public and uploads there return a public URL. The
other buckets are private: uploads return the storage path and readers ask
for a short-lived signed URL.
"""

import logging
import time
from typing import Optional

from laborhire.config import get_settings
from laborhire.errors import ValidationError
from laborhire.platform.base import Backend
from laborhire.session import SessionContext

logger = logging.getLogger(__name__)

PROFILE_PHOTOS = "profile-photos"
RESUMES = "resumes"
IDENTITY_DOCUMENTS = "identity-documents"
CERTIFICATIONS = "certifications"

PUBLIC_BUCKETS = frozenset({PROFILE_PHOTOS})
PRIVATE_BUCKETS = frozenset({RESUMES, IDENTITY_DOCUMENTS, CERTIFICATIONS})


def _check_bucket(bucket: str) -> None:
    if bucket not in PUBLIC_BUCKETS and bucket not in PRIVATE_BUCKETS:
        raise ValidationError(f"Unknown storage bucket: {bucket}")


class DocumentStore:
    def __init__(self, backend: Backend, session: SessionContext):
        self.backend = backend
        self.session = session

    def path_for(self, filename: str, folder: Optional[str] = None) -> str:
        """``<user_id>/[folder/]<millis>.<ext>`` for the signed-in user."""
        user = self.session.user
        if user is None:
            self.session.require_profile()
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
        prefix = f"{user.id}/{folder}/" if folder else f"{user.id}/"
        return f"{prefix}{int(time.time() * 1000)}.{ext}"

    async def upload(
        self,
        bucket: str,
        filename: str,
        data: bytes,
        content_type: Optional[str] = None,
        folder: Optional[str] = None,
    ) -> str:
        """Upload a file; returns the public URL or, for private buckets, the path."""
        _check_bucket(bucket)
        if not data:
            raise ValidationError("File is empty")
        path = await self.backend.upload(bucket, self.path_for(filename, folder), data, content_type)
        logger.info(f"Uploaded file | bucket={bucket} | path={path} | size={len(data)}")
        if bucket in PUBLIC_BUCKETS:
            return await self.backend.public_url(bucket, path)
        return path

    async def delete(self, bucket: str, path: str) -> None:
        _check_bucket(bucket)
        await self.backend.remove(bucket, [path])

    async def signed_url(self, bucket: str, path: str, expires_in: Optional[int] = None) -> str:
        _check_bucket(bucket)
        if path.startswith("http"):
            # Already a full URL (public bucket or legacy row)
            return path
        if expires_in is None:
            expires_in = get_settings().signed_url_ttl
        return await self.backend.signed_url(bucket, path, expires_in)
