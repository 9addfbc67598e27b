"""
Simulation parameter and job schemas.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .common import UUIDStr, iso_utc

JobStatus = Literal["Submitted", "Running", "Done", "Failed"]
SimulationMode = Literal["2D", "3D"]
Movement = Literal["None", "Random", "Directed", "Collective", "Flow"]

MAX_DURATION = 1000

# User-facing spellings accepted by the import format and the dashboard form.
MOVEMENT_ALIASES = {
    "static": "None",
    "none": "None",
    "random": "Random",
    "directed": "Directed",
    "collective": "Collective",
    "flow": "Flow",
}

MOVEMENT_FIELDS = (
    "tumor_movement",
    "immune_movement",
    "stem_movement",
    "fibroblast_movement",
    "drug_carrier_movement",
)


class SimulationParameters(BaseModel):
    """Immutable snapshot of one simulation configuration."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    title: str = Field(default="Untitled", min_length=1, max_length=255)
    mode: SimulationMode = "2D"
    substrate: str = Field(default="Oxygen", min_length=1, max_length=255)
    duration: float = Field(default=5, gt=0, le=MAX_DURATION)
    decay_rate: float = Field(default=0.1, ge=0, le=1)
    division_rate: float = Field(default=0.1, ge=0, le=10)

    x: int = Field(default=1, ge=0, le=1000)
    y: int = Field(default=1, ge=0, le=1000)
    z: Optional[int] = Field(default=None, ge=0, le=1000)

    tumor_count: int = Field(ge=1, le=10000)
    immune_count: int = Field(default=0, ge=0, le=10000)
    stem_count: int = Field(default=0, ge=0, le=10000)
    fibroblast_count: int = Field(default=0, ge=0, le=10000)
    drug_carrier_count: int = Field(default=0, ge=0, le=10000)

    tumor_movement: Optional[Movement] = None
    immune_movement: Optional[Movement] = None
    stem_movement: Optional[Movement] = None
    fibroblast_movement: Optional[Movement] = None
    drug_carrier_movement: Optional[Movement] = None

    seed: Optional[int] = Field(default=None, ge=0)

    @field_validator(*MOVEMENT_FIELDS, mode="before")
    @classmethod
    def map_movement(cls, value: Any) -> Any:
        if isinstance(value, str):
            return MOVEMENT_ALIASES.get(value.strip().lower(), value)
        return value

    @model_validator(mode="after")
    def check_depth(self) -> "SimulationParameters":
        if self.mode == "2D" and self.z:
            raise ValueError("z must be 0 or omitted in 2D mode")
        if self.mode == "3D" and self.z is None:
            raise ValueError("z is required in 3D mode")
        return self


class ImportedSimulation(SimulationParameters):
    """Import file format: explicit title/mode/substrate/duration, richer defaults."""

    title: str = Field(min_length=1, max_length=255)
    mode: SimulationMode
    substrate: str = Field(min_length=1, max_length=100)
    duration: float = Field(gt=0, le=MAX_DURATION)
    division_rate: float = Field(default=0.05, ge=0, le=10)

    x: int = Field(default=100, ge=0, le=1000)
    y: int = Field(default=100, ge=0, le=1000)

    immune_count: int = Field(default=50, ge=0, le=10000)
    stem_count: int = Field(default=25, ge=0, le=10000)
    fibroblast_count: int = Field(default=75, ge=0, le=10000)
    drug_carrier_count: int = Field(default=30, ge=0, le=10000)

    tumor_movement: Optional[Movement] = "Random"
    immune_movement: Optional[Movement] = "Directed"
    stem_movement: Optional[Movement] = "None"
    fibroblast_movement: Optional[Movement] = "Random"
    drug_carrier_movement: Optional[Movement] = "Directed"


class DispatchMessage(BaseModel):
    """Queue body: `{"jobId": ..., "parameters": {...}}`."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    job_id: UUIDStr
    parameters: SimulationParameters


class BatchCreateRequest(BaseModel):
    template: SimulationParameters
    # Range is enforced by the dispatcher so callers get INVALID_ARGUMENT.
    count: int = 1


class JobPublic(BaseModel):
    model_config = ConfigDict(json_encoders={datetime: iso_utc})

    id: UUIDStr
    owner_id: str
    status: JobStatus
    parameters: SimulationParameters
    result: Optional[dict[str, Any]] = None
    attempts: int = Field(ge=0)
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class JobsListResponse(BaseModel):
    jobs: List[JobPublic]
    corr_id: str


class JobResponse(BaseModel):
    job: JobPublic
    corr_id: str


class JobResultResponse(BaseModel):
    job_id: UUIDStr
    result: dict[str, Any]
    corr_id: str


class JobDeletedResponse(BaseModel):
    job_id: UUIDStr
    deleted: bool
    corr_id: str


class ImportValidationResponse(BaseModel):
    imported: int
    simulation_data: ImportedSimulation
    message: str
    corr_id: str
