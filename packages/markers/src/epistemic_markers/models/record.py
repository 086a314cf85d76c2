"""
StoreRecord - one annotation as the authoritative store returns it.

Ids are the store's raw, unprefixed ids.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class StoreRecord(BaseModel):
    id: str = Field(..., description="Raw store id (no namespace prefix)")
    content: str
    source_file: str
    start_offset: int
    end_offset: int
    kind: str
    profile: str = "personal"
    tagged_by: str = "user"
    tagged_at: Optional[datetime] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    notes: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
