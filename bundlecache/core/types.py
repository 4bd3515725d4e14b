"""Core type definitions for bundlecache."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ExtractionOutcome(StrEnum):
    """Terminal state of one extraction cycle."""
    PENDING = "pending"
    FRESH = "fresh"
    EXTRACTED = "extracted"
    ABORTED = "aborted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PackageInfo(BaseModel):
    """Installed application package metadata."""
    version_code: int = Field(..., alias="versionCode", description="Application version code")
    last_update_time: int = Field(
        ..., alias="lastUpdateTime", description="Last update time in milliseconds since the epoch"
    )

    model_config = ConfigDict(populate_by_name=True)


class PatchManifest(BaseModel):
    """Manifest shipped inside an override archive."""
    build_number: str | None = Field(None, alias="buildNumber", description="Baseline build this patch targets")
    patch_number: str | None = Field(None, alias="patchNumber", description="Patch sequence number")
    baseline_checksum: str | None = Field(
        None, alias="baselineChecksum", description="CRC32 of the baseline checksum files"
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)
