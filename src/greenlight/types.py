"""Typed models for greenlight."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

Number: TypeAlias = int | float

REQUESTS_COLLECTION = "requests"
CLIENTS_COLLECTION = "clients"
DEVICE_STATE_ROOT = "users"


def format_timestamp(value: datetime) -> str:
    """Format datetime as ISO 8601 UTC with milliseconds and Z suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class RequestKind(str, Enum):
    SIGNUP = "signup"
    OTHER = "other"


class Switch(str, Enum):
    ON = "ON"
    OFF = "OFF"


class ControlMode(str, Enum):
    MANUAL = "MANUAL"
    AUTO = "AUTO"


def _coerce_kind(value: Any) -> RequestKind:
    if isinstance(value, RequestKind):
        return value
    if isinstance(value, str) and value.strip().lower() == RequestKind.SIGNUP.value:
        return RequestKind.SIGNUP
    return RequestKind.OTHER


class OnboardingRequest(BaseModel):
    """A pending onboarding intent as stored in the ``requests`` collection.

    Field presence is not enforced here: a request missing ``authUid`` or ``cin``
    must still load so the coordinator can reject it explicitly.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    request_id: str = Field(exclude=True)
    cin: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    request_type: RequestKind = Field(default=RequestKind.OTHER, alias="requestType")
    date: str = ""
    status: RequestStatus = RequestStatus.PENDING
    auth_uid: str = Field(default="", alias="authUid")
    ec: int = 0

    @field_validator("cin", "name", "email", "phone", "date", "auth_uid", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value

    @field_validator("request_type", mode="before")
    @classmethod
    def _known_kind(cls, value: Any) -> RequestKind:
        return _coerce_kind(value)

    @field_validator("ec", mode="before")
    @classmethod
    def _ec_default(cls, value: Any) -> Any:
        if value is None:
            return 0
        return value

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "OnboardingRequest":
        return cls.model_validate({**data, "request_id": doc_id})

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Client(BaseModel):
    """Durable record of an approved user, keyed by ``auth_uid``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    cin: str
    name: str = ""
    email: str = ""
    phone: str = ""
    auth_uid: str = Field(alias="authUid")
    request_type: RequestKind = Field(default=RequestKind.OTHER, alias="requestType")
    status: Literal["approved"] = "approved"
    date_accepted: datetime = Field(alias="dateAccepted")
    ec: int = 0

    @field_validator("cin", "auth_uid")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("request_type", mode="before")
    @classmethod
    def _known_kind(cls, value: Any) -> RequestKind:
        return _coerce_kind(value)

    @field_validator("date_accepted")
    @classmethod
    def _timezone_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("dateAccepted must be timezone-aware")
        return value

    @field_serializer("date_accepted")
    def _serialize_date(self, value: datetime) -> str:
        return format_timestamp(value)

    @classmethod
    def from_request(cls, request: OnboardingRequest, accepted_at: datetime) -> "Client":
        return cls(
            cin=request.cin,
            name=request.name,
            email=request.email,
            phone=request.phone,
            auth_uid=request.auth_uid,
            request_type=request.request_type,
            date_accepted=accepted_at,
            ec=request.ec,
        )

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Client":
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EnvironmentState(BaseModel):
    humidity: Number = 0
    temperature: Number = 0
    water_level: Number = 0
    ph: Number = 0
    ec: Number = 0
    led: Switch = Switch.OFF
    ventilation: Switch = Switch.OFF
    water_pump: Switch = Switch.OFF
    air_pump: Switch = Switch.OFF
    control_mode: ControlMode = ControlMode.MANUAL


class EnergyState(BaseModel):
    daily_production: Number = 0
    energy_consumption: Number = 0
    stored_energy: Number = 0


class DeviceState(BaseModel):
    """Live operational state for one principal in the tree store."""

    name: str = ""
    environment: EnvironmentState = Field(default_factory=EnvironmentState)
    energy: EnergyState = Field(default_factory=EnergyState)

    @classmethod
    def seeded(cls, name: str, ec: int) -> "DeviceState":
        """Initial state: everything zeroed or off, except the configuration seed."""
        return cls(name=name, environment=EnvironmentState(ec=ec))

    def to_tree(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# -------- Saga step reporting --------


class Step(str, Enum):
    """The three round trips of an approval, in order."""

    DOCUMENTS = "documents"
    PROVISION = "provision"
    VERIFY = "verify"


class StepOutcome(str, Enum):
    COMMITTED = "committed"
    FAILED = "failed"
    UNVERIFIED = "unverified"


@dataclass(frozen=True, slots=True)
class StepResult:
    step: Step
    outcome: StepOutcome
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is StepOutcome.COMMITTED


@dataclass
class ApprovalReport:
    """Per-step record of one approval or resume.

    ``request_id`` is None when the report comes from resuming a principal that
    was already approved; the persisted client is then the only cursor.
    """

    auth_uid: str
    request_id: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    attempts: int = 0

    def record(self, step: Step, outcome: StepOutcome, detail: str | None = None) -> StepResult:
        result = StepResult(step=step, outcome=outcome, detail=detail)
        self.steps.append(result)
        return result

    @property
    def last(self) -> StepResult | None:
        return self.steps[-1] if self.steps else None

    @property
    def success(self) -> bool:
        last = self.last
        return last is not None and last.step is Step.VERIFY and last.ok

    def as_response(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "authUid": self.auth_uid}
        last = self.last
        code = "ProvisioningUnverified"
        if last is not None and last.outcome is StepOutcome.FAILED:
            code = "ProvisioningFailed"
        return {"error": code, "authUid": self.auth_uid, "attempts": self.attempts}


# -------- Document store notifications --------


ChangeKind = Literal["added", "modified", "removed"]


@dataclass(frozen=True, slots=True)
class DocumentChange:
    kind: ChangeKind
    doc_id: str
    data: dict[str, Any] | None


@dataclass(frozen=True, slots=True)
class CollectionSnapshot:
    """Full state of a collection after a commit, plus what the commit changed."""

    collection: str
    documents: dict[str, dict[str, Any]]
    changes: tuple[DocumentChange, ...] = ()


# -------- Audit trail --------


Operation = Literal["approve", "decline", "provision", "edit", "decommission"]


class AuditEntry(BaseModel):
    """Audit log entry for JSONL output."""

    timestamp: datetime
    operation: Operation
    target_id: str
    auth_uid: str | None = None
    outcome: Literal["success", "error"]
    error_code: str | None = None
    error: str | None = None
    steps: list[dict[str, str]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_timezone_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("timestamp must be timezone-aware")
        return value

    @field_validator("target_id")
    @classmethod
    def _target_id_non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("target_id must be a non-empty string")
        return value

    @field_validator("error", mode="before")
    @classmethod
    def _truncate_error(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if len(value) > 200:
            return value[:197] + "..."
        return value

    def to_json_line(self) -> str:
        """Render the entry as a single JSON line."""
        return json.dumps(self.model_dump(mode="json", exclude_none=True))
