"""
MyGeotab entity schemas.

DVIRLog, DVIRDefect, User, Device and Group as they arrive from the API,
normalized once at ingestion. Every parser here is lenient: a malformed
nested value degrades to None or an empty list instead of rejecting the
whole record.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from dvirsync.core.logging import get_logger

logger = get_logger(__name__)

# The defect collection comes back under any of these names depending on
# server version; the first one present wins.
DEFECT_FIELD_ALIASES = ("dVIRDefects", "dvirDefects", "DVIRDefects")

UNKNOWN_DRIVER_ID = "UnknownDriverId"


def raw_defects(raw: Mapping[str, Any]) -> list[Any]:
    """Return the raw defect list of an API record, or [] if absent or malformed."""
    for alias in DEFECT_FIELD_ALIASES:
        value = raw.get(alias)
        if value is not None:
            return list(value) if isinstance(value, list) else []
    return []


def _lenient_datetime(value: Any) -> Optional[datetime]:
    # Naive timestamps are taken as UTC, which is what the API sends
    if isinstance(value, str) and value:
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value)
    return text or None


class EntityRef(BaseModel):
    """Reference to another entity ({"id": ..., "name": ...})."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_bare_id(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"id": data}
        if not isinstance(data, Mapping):
            return {}
        return data

    @field_validator("id", "name", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)


class DefectDescription(BaseModel):
    """The defect definition a DVIRDefect points at."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[str] = None

    @field_validator("name", "description", "severity", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @property
    def label(self) -> Optional[str]:
        return self.name or self.description


class DefectRemark(BaseModel):
    """A remark left on a defect; the text field name varies."""

    model_config = ConfigDict(extra="ignore")

    remark: Optional[str] = None
    comment: Optional[str] = None
    text: Optional[str] = None

    @field_validator("remark", "comment", "text", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @property
    def content(self) -> str:
        return self.remark or self.comment or self.text or ""


class DefectEntry(BaseModel):
    """One reported fault on an inspection (DVIRDefect)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    repair_status: str = Field("", validation_alias=AliasChoices("repairStatus", "repair_status"))
    defect: Optional[DefectDescription] = None
    part: Optional[str] = None
    repair_user: Optional[EntityRef | str] = Field(
        None, validation_alias=AliasChoices("repairUser", "repair_user")
    )
    repair_date_time: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("repairDateTime", "repair_date_time")
    )
    remarks: List[DefectRemark] = Field(
        default_factory=list, validation_alias=AliasChoices("defectRemarks", "remarks")
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("repair_status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("defect", mode="before")
    @classmethod
    def coerce_defect(cls, v: Any) -> Any:
        return v if isinstance(v, Mapping) else None

    @field_validator("part", mode="before")
    @classmethod
    def coerce_part(cls, v: Any) -> Optional[str]:
        if isinstance(v, Mapping):
            return _optional_text(v.get("name"))
        return _optional_text(v)

    @field_validator("repair_user", mode="before")
    @classmethod
    def coerce_repair_user(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return EntityRef.model_validate(v)
        if isinstance(v, str) and v:
            return v
        return None

    @field_validator("repair_date_time", mode="before")
    @classmethod
    def coerce_repair_date(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)

    @field_validator("remarks", mode="before")
    @classmethod
    def coerce_remarks(cls, v: Any) -> list:
        if not isinstance(v, list):
            return []
        return [r for r in v if isinstance(r, Mapping)]

    @property
    def repair_user_id(self) -> Optional[str]:
        """Identifier of the repair performer, if one is referenced."""
        if isinstance(self.repair_user, EntityRef):
            return self.repair_user.id
        return self.repair_user


class InspectionRecord(BaseModel):
    """
    A DVIR log.

    List queries return stubs (no defects); a by-id fetch returns the full
    record. Both parse into this model.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    device: Optional[EntityRef] = None
    driver: Optional[EntityRef] = None
    date_time: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("dateTime", "logDate", "date_time")
    )
    log_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("logType", "type", "log_type")
    )
    is_safe_to_operate: Optional[bool] = Field(
        None, validation_alias=AliasChoices("isSafeToOperate", "is_safe_to_operate")
    )
    defects: List[DefectEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_defects(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "defects" not in data:
            data = dict(data)
            data["defects"] = [d for d in raw_defects(data) if isinstance(d, Mapping)]
        return data

    @field_validator("id", mode="before")
    @classmethod
    def require_id(cls, v: Any) -> Any:
        text = _optional_text(v)
        if not text:
            raise ValueError("DVIR log id is required")
        return text

    @field_validator("device", "driver", mode="before")
    @classmethod
    def coerce_ref(cls, v: Any) -> Any:
        return v if isinstance(v, (Mapping, str)) else None

    @field_validator("date_time", mode="before")
    @classmethod
    def coerce_date(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)

    @field_validator("log_type", mode="before")
    @classmethod
    def coerce_log_type(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("is_safe_to_operate", mode="before")
    @classmethod
    def coerce_safe(cls, v: Any) -> Optional[bool]:
        return v if isinstance(v, bool) else None

    @property
    def device_id(self) -> Optional[str]:
        return self.device.id if self.device else None

    @property
    def driver_id(self) -> Optional[str]:
        return self.driver.id if self.driver else None

    @property
    def safe_to_operate(self) -> bool:
        # Only an explicit False marks the vehicle unsafe
        return self.is_safe_to_operate is not False

    @classmethod
    def from_api(cls, raw: Any) -> Optional["InspectionRecord"]:
        """Parse one API record; returns None for anything unusable."""
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Skipping malformed DVIR log: {e.error_count()} validation error(s)")
            return None


class DriverIdentity(BaseModel):
    """A MyGeotab User resolved by id."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    first_name: Optional[str] = Field(None, validation_alias=AliasChoices("firstName", "first_name"))
    last_name: Optional[str] = Field(None, validation_alias=AliasChoices("lastName", "last_name"))
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.name or self.id

    @classmethod
    def from_api(cls, raw: Any) -> Optional["DriverIdentity"]:
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None


class Device(BaseModel):
    """A vehicle."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: Optional[str] = None
    groups: List[EntityRef] = Field(default_factory=list)
    active_to: Optional[datetime] = Field(None, validation_alias=AliasChoices("activeTo", "active_to"))

    @field_validator("groups", mode="before")
    @classmethod
    def coerce_groups(cls, v: Any) -> list:
        return v if isinstance(v, list) else []

    @field_validator("active_to", mode="before")
    @classmethod
    def coerce_active_to(cls, v: Any) -> Optional[datetime]:
        return _lenient_datetime(v)

    def is_active(self, now: datetime) -> bool:
        return self.active_to is None or self.active_to > now

    def in_group(self, group_id: str) -> bool:
        return any(g.id == group_id for g in self.groups)


class Group(BaseModel):
    """A device group."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
