"""
Pydantic request schemas for the HTTP surface.

Wire names are camelCase (the admin dashboard's convention); attributes
are snake_case. Enum-valued fields arrive as plain strings and are
validated by the services so every rejection uses the same error envelope.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class CreateAlertRequest(_CamelModel):
    """Create (and optionally dispatch) an alert."""
    type: str = Field(..., examples=["FLOOD_WARNING"])
    severity: str = Field(..., examples=["HIGH"])
    title: str = Field(..., max_length=200, examples=["Flash Flood Warning"])
    message: str = Field(..., max_length=2000, examples=["Hope River rising fast. Move to high ground."])
    parishes: List[str] = Field(..., examples=[["KINGSTON", "ST_ANDREW"]])
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    send_immediately: bool = Field(False, alias="sendImmediately")


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

class IncidentReportRequest(_CamelModel):
    """Public incident report submission."""
    incident_type: str = Field(..., alias="incidentType", examples=["FLOOD"])
    severity: str = Field(..., examples=["MEDIUM"])
    parish: str = Field(..., examples=["ST_CATHERINE"])
    description: str = Field(..., examples=["Water over the road at Bog Walk gorge"])
    incident_date: date = Field(..., alias="incidentDate")
    community: Optional[str] = Field(None, examples=["Bog Walk"])
    address: Optional[str] = None
    reporter_id: Optional[str] = Field(None, alias="reporterId")
    reporter_name: Optional[str] = Field(None, alias="reporterName")
    reporter_phone: Optional[str] = Field(None, alias="reporterPhone")
    is_anonymous: bool = Field(False, alias="isAnonymous")
    receive_updates: bool = Field(False, alias="receiveUpdates")
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)

    @field_validator("community", "address", "reporter_name", "reporter_phone", "reporter_id")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None
