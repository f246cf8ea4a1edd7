"""Verification requests submitted by workers and employers."""

import logging
from typing import List, Optional, Sequence

from laborhire.errors import ValidationError
from laborhire.files import CERTIFICATIONS, IDENTITY_DOCUMENTS, DocumentStore
from laborhire.platform.base import Backend, eq
from laborhire.session import SessionContext
from laborhire.types import VerificationRequest, VerificationStatus

logger = logging.getLogger(__name__)

VERIFICATION_TYPES = ("identity", "skills", "employer")


def bucket_for(verification_type: str) -> str:
    """Identity documents are kept apart from everything else."""
    return IDENTITY_DOCUMENTS if verification_type == "identity" else CERTIFICATIONS


class VerificationService:
    def __init__(self, backend: Backend, session: SessionContext, documents: Optional[DocumentStore] = None):
        self.backend = backend
        self.session = session
        self.documents = documents or DocumentStore(backend, session)

    async def upload_document(self, verification_type: str, filename: str, data: bytes) -> str:
        return await self.documents.upload(bucket_for(verification_type), filename, data)

    async def submit(self, verification_type: str, document_urls: Sequence[str]) -> VerificationRequest:
        profile = self.session.require_profile()
        if not verification_type or not document_urls:
            raise ValidationError("Please select verification type and upload at least one document.")
        if verification_type not in VERIFICATION_TYPES:
            raise ValidationError(f"Unknown verification type: {verification_type}")
        if verification_type == "employer" and not profile.is_employer:
            raise ValidationError("Employer verification is only available to employers")

        row = await self.backend.insert(
            "verification_requests",
            {
                "user_id": profile.id,
                "verification_type": verification_type,
                "document_urls": list(document_urls),
                "status": VerificationStatus.PENDING.value,
            },
        )
        logger.info(f"Verification requested | profile={profile.id} | type={verification_type}")
        return VerificationRequest.from_dict(row)

    async def my_requests(self) -> List[VerificationRequest]:
        profile = self.session.require_profile()
        rows = await self.backend.select(
            "verification_requests", [eq("user_id", profile.id)], order="submitted_at", desc=True
        )
        return [VerificationRequest.from_dict(r) for r in rows]
