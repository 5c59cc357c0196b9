"""
Sensor Payload Parser

This module decodes the JSON status payloads published by Shelly temperature add-ons.

Payload Format:
    {"id": 100, "tC": 22.5, "tF": 72.5, "errors": []}

Where:
- id = Sensor component id (not used for routing; the MQTT topic identifies the source)
- tC = Temperature in Celsius, or null when the sensor has no valid reading
- tF = Temperature in Fahrenheit, or null
- errors = Error strings reported by the sensor itself (optional)
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class DecodeError(ValueError):
    """Raised when a payload is not a well-formed sensor reading."""


class Reading(BaseModel):
    """A single decoded sensor message."""

    model_config = ConfigDict(strict=True, frozen=True, allow_inf_nan=False)

    id: int = 0
    celsius: float | None = Field(default=None, alias="tC")
    fahrenheit: float | None = Field(default=None, alias="tF")
    errors: list[str] = Field(default_factory=list)

    @field_validator("errors", mode="before")
    @classmethod
    def _null_errors(cls, value):
        return [] if value is None else value


def decode_payload(payload: bytes) -> Reading:
    """
    Decode a raw MQTT payload into a Reading.

    A missing or null ``tC`` is not an error here; the reading is returned with
    ``celsius`` set to None and the caller decides what to do with it.

    Args:
        payload: Raw message bytes (UTF-8 JSON, optionally whitespace padded).

    Returns:
        Reading: The decoded reading.

    Raises:
        DecodeError: If the payload is not valid UTF-8 JSON or a field has the wrong type.
    """
    try:
        text = payload.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}") from e

    try:
        return Reading.model_validate_json(text)
    except ValidationError as e:
        raise DecodeError(f"Malformed payload: {e.errors(include_url=False)}") from e
