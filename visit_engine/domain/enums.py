"""Controlled enumerations for the visit-engine domain."""

from __future__ import annotations

from enum import Enum


class RowType(str, Enum):
    """Kinds of row emitted by the visit report."""

    VISIT = "Visit"
    EVENT = "Event"
    AUDIO_BAIT = "Audio Bait"


class RecordingType(str, Enum):
    """Media captured by a field sensor."""

    THERMAL_RAW = "thermalRaw"
    AUDIO = "audio"
    IMAGE = "image"


# Label used when no usable tag exists for a visit or event.
UNIDENTIFIED = "unidentified"
