"""Strict schema baselines with forbidden extras by default."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Neutral strict base for response DTOs."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request DTO base: strict types, surrounding whitespace stripped."""

    model_config = ConfigDict(
        extra="ignore",
        strict=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )
