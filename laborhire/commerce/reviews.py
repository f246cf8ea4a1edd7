"""
Reviews and rating summaries.

Ratings are aggregated server-side only (``calculate_average_rating`` and
``get_review_count``). The per-(reviewer, reviewee, job) uniqueness rule is
the backend's; its violation comes back as ``AlreadyReviewedError``.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from laborhire.errors import AlreadyReviewedError, ValidationError
from laborhire.platform.base import Backend, BackendError, eq, in_
from laborhire.session import SessionContext
from laborhire.types import Review, to_decimal

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def parse_rating(value: Any) -> int:
    """Whole stars from 1 to 5; form input may arrive as a string."""
    try:
        stars = int(str(value).strip())
    except ValueError:
        raise ValidationError("Rating must be a whole number of stars.")
    if not MIN_RATING <= stars <= MAX_RATING:
        raise ValidationError("Rating must be between 1 and 5 stars.")
    return stars


@dataclass
class RatingSummary:
    average: Decimal
    count: int


@dataclass
class ReviewEntry:
    """A review with the reviewer's display profile and job title."""

    review: Review
    reviewer: Dict[str, Any]
    job_title: Optional[str] = None


class ReviewService:
    def __init__(self, backend: Backend, session: SessionContext):
        self.backend = backend
        self.session = session

    async def submit(
        self,
        reviewee_id: str,
        rating: Any,
        text: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> Review:
        profile = self.session.profile
        if profile is None or rating in (None, "", 0, "0"):
            raise ValidationError("Please select a rating.")
        rating = parse_rating(rating)
        try:
            row = await self.backend.insert(
                "reviews",
                {
                    "reviewer_id": profile.id,
                    "reviewee_id": reviewee_id,
                    "job_id": job_id,
                    "rating": rating,
                    "review_text": (text or "").strip() or None,
                },
            )
        except BackendError as e:
            if e.is_unique_violation:
                raise AlreadyReviewedError("You have already reviewed this person for this job.") from e
            raise
        logger.info(f"Review submitted | reviewer={profile.id} | reviewee={reviewee_id} | rating={rating}")
        return Review.from_dict(row)

    async def rating_summary(self, profile_id: str) -> RatingSummary:
        params = {"user_profile_id": profile_id}
        average = await self.backend.rpc("calculate_average_rating", params)
        count = await self.backend.rpc("get_review_count", params)
        return RatingSummary(average=to_decimal(average), count=int(count or 0))

    async def reviews_for(self, profile_id: str) -> List[ReviewEntry]:
        """Reviews received by ``profile_id``, newest first."""
        rows = await self.backend.select(
            "reviews", [eq("reviewee_id", profile_id)], order="created_at", desc=True
        )
        if not rows:
            return []

        reviewer_ids = sorted({r["reviewer_id"] for r in rows})
        profiles = await self.backend.select(
            "profiles",
            [in_("id", reviewer_ids)],
            columns="id,full_name,profile_photo_url,company_name,role",
        )
        by_id = {p["id"]: p for p in profiles}

        job_ids = sorted({r["job_id"] for r in rows if r.get("job_id")})
        titles: Dict[str, str] = {}
        if job_ids:
            jobs = await self.backend.select("jobs", [in_("id", job_ids)], columns="id,title")
            titles = {j["id"]: j["title"] for j in jobs}

        return [
            ReviewEntry(
                review=Review.from_dict(row),
                reviewer=by_id.get(
                    row["reviewer_id"],
                    {"id": row["reviewer_id"], "full_name": "Unknown User", "role": "unknown"},
                ),
                job_title=titles.get(row.get("job_id")),
            )
            for row in rows
        ]
