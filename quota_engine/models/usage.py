"""
quota_engine/models/usage.py

Daily usage counters.

Keyed in storage by (user_id, UTC date). All fields only grow within a
day; a new date key starts from zero.
"""

from pydantic import BaseModel, ConfigDict, Field


class DailyUsageData(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_count: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_cost_usd: float = Field(default=0.0, ge=0)
