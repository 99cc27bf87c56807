from typing import Annotated, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, Field


WorkType = Literal[
    "backhoe",
    "loader",
    "bobcat",
    "grader",
    "truck_driver",
    "semi_trailer",
    "general_labor",
    "mini_excavator",
    "excavator",
    "mini_backhoe",
    "wheeled_backhoe",
    "telescopic_loader",
    "full_trailer",
    "bathtub",
    "double",
    "flatbed",
    "breaker",
]
ServiceType = Literal["operator_with_equipment", "equipment_only", "operator_only"]
Urgency = Literal["low", "medium", "high", "urgent"]
JobStatus = Literal["open", "assigned", "completed", "cancelled"]

EquipmentType = Literal[
    "backhoe",
    "loader",
    "bobcat",
    "grader",
    "truck",
    "mini_excavator",
    "generator",
    "compressor",
    "other",
]
MaintenanceType = Literal[
    "oil_change",
    "hydraulic_service",
    "engine_service",
    "electrical",
    "brake_service",
    "cooling_system",
    "tire_service",
    "inspection",
    "repair",
]
ServiceRequestStatus = Literal["open", "closed", "cancelled"]
QuoteStatus = Literal["pending", "accepted", "rejected"]
EstimatedDuration = Literal["1_hour", "2_hours", "half_day", "full_day", "multiple_days"]
QuoteAvailability = Literal["immediate", "today", "tomorrow", "this_week", "next_week", "custom"]
EngagementKind = Literal["job", "service"]
Role = Literal["contractor", "customer", "worker", "technician"]

WORK_TYPES = get_args(WorkType)
SERVICE_TYPES = get_args(ServiceType)
URGENCY_LEVELS = get_args(Urgency)
JOB_STATUSES = get_args(JobStatus)
EQUIPMENT_TYPES = get_args(EquipmentType)
MAINTENANCE_TYPES = get_args(MaintenanceType)
SERVICE_REQUEST_STATUSES = get_args(ServiceRequestStatus)
QUOTE_STATUSES = get_args(QuoteStatus)
ESTIMATED_DURATIONS = get_args(EstimatedDuration)
QUOTE_AVAILABILITY = get_args(QuoteAvailability)
ROLES = get_args(Role)

GENERAL_LABOR = "general_labor"


class StandardDetail(BaseModel):
    kind: Literal["standard"] = "standard"
    notes: str = ""


class SandDeliveryDetail(BaseModel):
    kind: Literal["sand_delivery"] = "sand_delivery"
    quantity: int = Field(ge=1, le=20)
    material: str = Field(min_length=1)


JobDetail = Annotated[Union[StandardDetail, SandDeliveryDetail], Field(discriminator="kind")]


class JobRequest(BaseModel):
    id: str
    poster_id: str
    work_type: WorkType
    service_type: ServiceType
    location: str
    scheduled_at: str
    urgency: Urgency = "medium"
    status: JobStatus
    assigned_worker_id: Optional[str] = None
    detail: JobDetail = Field(default_factory=StandardDetail)
    created_at: str
    updated_at: str


class JobRequestCreate(BaseModel):
    work_type: str
    service_type: str = "operator_with_equipment"
    location: str = ""
    scheduled_at: str = ""
    urgency: str = "medium"
    detail: Optional[JobDetail] = None
    # Free-text notes from older clients; parsed into a detail variant on create.
    notes: Optional[str] = None


class WorkerCapabilityProfile(BaseModel):
    id: str
    owner_id: str
    work_type: WorkType
    owns_equipment: bool = False
    available: bool = True
    rating_mean: float = 0.0
    rating_count: int = 0
    bio: str = ""
    location: str = ""
    experience_years: int = 0


class WorkerProfileUpsertRequest(BaseModel):
    work_type: str
    owns_equipment: bool = False
    available: bool = True
    bio: str = ""
    location: str = ""
    experience_years: int = 0


class TechnicianProfile(BaseModel):
    id: str
    owner_id: str
    specializations: List[str] = Field(default_factory=list)
    available: bool = True
    rating_mean: float = 0.0
    rating_count: int = 0
    bio: str = ""
    location: str = ""


class TechnicianProfileUpsertRequest(BaseModel):
    specializations: List[str] = Field(default_factory=list)
    available: bool = True
    bio: str = ""
    location: str = ""


class ServiceRequest(BaseModel):
    id: str
    poster_id: str
    equipment_type: EquipmentType
    maintenance_type: MaintenanceType
    location: str
    urgency: Urgency = "medium"
    status: ServiceRequestStatus
    budget_range: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    description: str = ""
    equipment_name: str = ""
    preferred_date: Optional[str] = None
    created_at: str
    updated_at: str


class ServiceRequestCreate(BaseModel):
    equipment_type: str
    maintenance_type: str
    location: str = ""
    urgency: str = "medium"
    budget_range: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)
    description: str = ""
    equipment_name: str = ""
    preferred_date: Optional[str] = None


class Quote(BaseModel):
    id: str
    request_id: str
    provider_id: str
    price: float
    description: str = ""
    estimated_duration: Optional[EstimatedDuration] = None
    availability: Optional[QuoteAvailability] = None
    arrival_time: Optional[str] = None
    status: QuoteStatus
    created_at: str


class QuoteSubmitRequest(BaseModel):
    price: float
    description: str = ""
    estimated_duration: Optional[str] = None
    availability: Optional[str] = None
    arrival_time: Optional[str] = None


class Rating(BaseModel):
    id: str
    engagement_kind: EngagementKind
    engagement_id: str
    subject_id: str
    rater_id: str
    score: int = Field(ge=1, le=5)
    review: Optional[str] = None
    created_at: str


class RatingSubmitRequest(BaseModel):
    engagement_kind: EngagementKind
    engagement_id: str
    subject_id: str
    score: int
    review: Optional[str] = None


class RatingAggregate(BaseModel):
    subject_id: str
    rating_mean: float = 0.0
    rating_count: int = 0


class StatusChange(BaseModel):
    id: str
    entity_kind: Literal["job", "service_request", "quote"]
    entity_id: str
    actor_id: str
    from_status: str
    to_status: str
    created_at: str


class Principal(BaseModel):
    user_id: str
    role: Role


class AuthLoginRequest(BaseModel):
    user_id: str
    role: Role
    password: str = ""


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: Role
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: Role


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["job", "maintenance", "rating", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
