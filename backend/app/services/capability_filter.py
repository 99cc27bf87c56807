"""Visibility rules for open requests.

These functions only decide what a caller *sees*. Accepting a job does not
re-check them.
"""

from typing import Iterable, List, Literal, Union

from app.models import (
    GENERAL_LABOR,
    JobRequest,
    ServiceRequest,
    TechnicianProfile,
    WorkerCapabilityProfile,
)

RequestKind = Literal["job", "service"]

WITH_EQUIPMENT_SERVICE_TYPES = frozenset({"operator_with_equipment"})
WITHOUT_EQUIPMENT_SERVICE_TYPES = frozenset({"operator_only", "operator_with_equipment"})


def job_visible_to(job: JobRequest, profile: WorkerCapabilityProfile) -> bool:
    if job.status != "open":
        return False
    if job.work_type != profile.work_type and job.work_type != GENERAL_LABOR:
        return False
    allowed = WITH_EQUIPMENT_SERVICE_TYPES if profile.owns_equipment else WITHOUT_EQUIPMENT_SERVICE_TYPES
    return job.service_type in allowed


def service_request_visible_to(request: ServiceRequest, profile: TechnicianProfile) -> bool:
    # Technicians see every open request regardless of specialization.
    return request.status == "open"


def list_eligible(
    kind: RequestKind,
    profile: Union[WorkerCapabilityProfile, TechnicianProfile],
    open_requests: Iterable[Union[JobRequest, ServiceRequest]],
) -> List[Union[JobRequest, ServiceRequest]]:
    if kind == "job":
        if not isinstance(profile, WorkerCapabilityProfile):
            raise TypeError("Job eligibility needs a worker capability profile")
        return [job for job in open_requests if isinstance(job, JobRequest) and job_visible_to(job, profile)]
    if kind == "service":
        if not isinstance(profile, TechnicianProfile):
            raise TypeError("Service request eligibility needs a technician profile")
        return [
            request
            for request in open_requests
            if isinstance(request, ServiceRequest) and service_request_visible_to(request, profile)
        ]
    raise ValueError(f"Unknown request kind: {kind}")
