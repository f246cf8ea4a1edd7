"""
Job board: posting, browsing and applying.

Employers must be verified to post or edit jobs and workers must be
verified to apply. The one-application-per-(job, worker) rule is enforced
by the backend and surfaces as ``AlreadyAppliedError``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from laborhire.errors import (
    AlreadyAppliedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    VerificationRequiredError,
)
from laborhire.platform.base import Backend, BackendError, eq, in_
from laborhire.session import SessionContext
from laborhire.types import Application, ApplicationStatus, Job, JobStatus, Profile

logger = logging.getLogger(__name__)

EDITABLE_JOB_FIELDS = frozenset(
    {"title", "description", "location", "pay_rate", "duration", "required_skills", "deadline", "status"}
)


@dataclass
class ApplicationEntry:
    """An application on one of the employer's jobs, with the worker's profile."""

    application: Application
    job_title: str
    worker: Profile


class JobBoard:
    def __init__(self, backend: Backend, session: SessionContext):
        self.backend = backend
        self.session = session

    def _verified_employer(self) -> Profile:
        profile = self.session.require_profile()
        if not profile.is_employer:
            raise PermissionDeniedError("Only employers can post jobs")
        if not profile.is_verified:
            raise VerificationRequiredError(
                "You must be verified before posting jobs. Please complete the verification process."
            )
        return profile

    async def _owned_job(self, job_id: str, employer: Profile) -> Job:
        rows = await self.backend.select("jobs", [eq("id", job_id)], limit=1)
        if not rows:
            raise NotFoundError(f"Job {job_id} not found")
        job = Job.from_dict(rows[0])
        if job.employer_id != employer.id:
            raise PermissionDeniedError("You can only manage your own jobs")
        return job

    # === Employer side ===

    async def post_job(
        self,
        title: str,
        description: str,
        location: str,
        pay_rate: str,
        duration: str = "",
        required_skills: Sequence[str] = (),
        deadline: Optional[datetime] = None,
    ) -> Job:
        employer = self._verified_employer()
        if not title or not description or not location or not pay_rate:
            raise ValidationError("Title, description, location and pay rate are required")
        row = await self.backend.insert(
            "jobs",
            {
                "employer_id": employer.id,
                "title": title,
                "description": description,
                "location": location,
                "pay_rate": pay_rate,
                "duration": duration,
                "required_skills": list(required_skills),
                "deadline": deadline.isoformat() if deadline else None,
                "status": JobStatus.OPEN.value,
            },
        )
        logger.info(f"Job posted | id={row['id']} | employer={employer.id}")
        return Job.from_dict(row)

    async def update_job(self, job_id: str, **changes: Any) -> Job:
        employer = self._verified_employer()
        unknown = set(changes) - EDITABLE_JOB_FIELDS
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(sorted(unknown))}")
        await self._owned_job(job_id, employer)
        if isinstance(changes.get("deadline"), datetime):
            changes["deadline"] = changes["deadline"].isoformat()
        if "required_skills" in changes:
            changes["required_skills"] = list(changes["required_skills"])
        rows = await self.backend.update("jobs", changes, [eq("id", job_id)])
        return Job.from_dict(rows[0])

    async def close_job(self, job_id: str) -> Job:
        employer = self.session.require_profile()
        await self._owned_job(job_id, employer)
        rows = await self.backend.update("jobs", {"status": JobStatus.CLOSED.value}, [eq("id", job_id)])
        logger.info(f"Job closed | id={job_id}")
        return Job.from_dict(rows[0])

    async def applications_for_employer(self, status: Optional[str] = None) -> List[ApplicationEntry]:
        """Applications on the employer's jobs, newest first.

        Applications whose worker profile can't be loaded are left out.
        """
        employer = self.session.require_profile()
        jobs = await self.backend.select("jobs", [eq("employer_id", employer.id)], columns="id,title")
        if not jobs:
            return []
        titles = {j["id"]: j["title"] for j in jobs}

        filters = [in_("job_id", list(titles))]
        if status:
            filters.append(eq("status", status))
        rows = await self.backend.select("applications", filters, order="applied_at", desc=True)
        if not rows:
            return []

        workers = await self.backend.select("profiles", [in_("id", sorted({r["worker_id"] for r in rows}))])
        by_id = {w["id"]: Profile.from_dict(w) for w in workers}

        entries = []
        for row in rows:
            worker = by_id.get(row["worker_id"])
            if worker is None:
                logger.warning(f"Skipping application with missing worker | application_id={row['id']}")
                continue
            entries.append(ApplicationEntry(Application.from_dict(row), titles[row["job_id"]], worker))
        return entries

    async def set_application_status(self, application_id: str, status: str) -> Application:
        if status not in (ApplicationStatus.ACCEPTED.value, ApplicationStatus.REJECTED.value):
            raise ValidationError(f"Invalid application status: {status}")
        employer = self.session.require_profile()
        rows = await self.backend.select("applications", [eq("id", application_id)], limit=1)
        if not rows:
            raise NotFoundError(f"Application {application_id} not found")
        await self._owned_job(rows[0]["job_id"], employer)
        updated = await self.backend.update("applications", {"status": status}, [eq("id", application_id)])
        logger.info(f"Application {status} | id={application_id}")
        return Application.from_dict(updated[0])

    # === Worker side ===

    async def browse(
        self,
        search: Optional[str] = None,
        location: Optional[str] = None,
        skill: Optional[str] = None,
        pay_rate: Optional[str] = None,
        match_my_skills: bool = False,
    ) -> List[Job]:
        """Open jobs, newest first, narrowed by case-insensitive substring filters."""
        rows = await self.backend.select(
            "jobs", [eq("status", JobStatus.OPEN.value)], order="created_at", desc=True
        )
        jobs = [Job.from_dict(r) for r in rows]

        if search:
            term = search.lower()
            jobs = [
                j
                for j in jobs
                if term in j.title.lower()
                or term in j.description.lower()
                or any(term in s.lower() for s in j.required_skills)
            ]
        if location:
            jobs = [j for j in jobs if location.lower() in j.location.lower()]
        if match_my_skills:
            profile = self.session.profile
            mine = {s.lower() for s in (profile.skills if profile else [])}
            jobs = [j for j in jobs if any(s.lower() in mine for s in j.required_skills)]
        elif skill:
            jobs = [j for j in jobs if any(skill.lower() in s.lower() for s in j.required_skills)]
        if pay_rate:
            jobs = [j for j in jobs if pay_rate.lower() in j.pay_rate.lower()]
        return jobs

    async def applied_job_ids(self) -> Set[str]:
        profile = self.session.require_profile()
        rows = await self.backend.select("applications", [eq("worker_id", profile.id)], columns="job_id")
        return {r["job_id"] for r in rows}

    async def apply(self, job_id: str, cover_letter: Optional[str] = None) -> Application:
        profile = self.session.require_profile()
        if not profile.is_worker:
            raise PermissionDeniedError("Only workers can apply for jobs")
        if not profile.is_verified:
            raise VerificationRequiredError(
                "You must be verified by an administrator before applying for jobs."
            )
        try:
            row = await self.backend.insert(
                "applications",
                {"job_id": job_id, "worker_id": profile.id, "cover_letter": cover_letter},
            )
        except BackendError as e:
            if e.is_unique_violation:
                raise AlreadyAppliedError("You have already applied for this job.") from e
            raise

        jobs = await self.backend.select("jobs", [eq("id", job_id)], columns="id,title", limit=1)
        title = jobs[0]["title"] if jobs else "Unknown Job"
        await self._log_activity(
            "job_application", f"Applied for job: {title}", {"job_id": job_id}
        )
        return Application.from_dict(row)

    async def _log_activity(self, activity_type: str, description: str, metadata: Dict[str, Any]) -> None:
        try:
            await self.backend.rpc(
                "log_activity",
                {"activity_type": activity_type, "description": description, "metadata": metadata},
            )
        except BackendError as e:
            logger.error(f"Failed to log activity | type={activity_type} | error={e.message}")
