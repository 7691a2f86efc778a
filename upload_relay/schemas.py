from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AnalysedItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    hard_criterium: Any = None
    score: Any = None


class EditedItem(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    label: Any = None
    is_negative: Any = Field(default=None, alias="isNegative")
    feedback: Any = None


class AnalysisRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysed: dict[str, list[AnalysedItem] | None] | None = None
    edited: dict[str, list[EditedItem] | None] | None = None
    file_id: str | int | None = Field(default=None, alias="fileId")
    record_id: str | int | None = Field(default=None, alias="recordId")
    saved_at: str | None = Field(default=None, alias="savedAt")


class SaveAnalysisResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    salesforce_id: str = Field(alias="salesforceId")
    saved_at: str = Field(alias="savedAt")


class SalesforceStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    connected: bool
    instance_url: str | None = Field(default=None, alias="instanceUrl")
    can_save: bool | None = Field(default=None, alias="canSave")
    mode: str | None = None


class HealthResponse(BaseModel):
    status: str
    message: str


class ServiceDescriptor(BaseModel):
    message: str
    endpoints: dict[str, str]
