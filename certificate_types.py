"""
Data model shared by the renderer, the batch orchestrator and the HTTP layer.

Field mappings are stored in background-image pixel coordinates with a
top-left origin, exactly as the field mapper records clicks.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DataRecord = dict[str, Union[str, int, float]]


class TemplateType(str, Enum):
    IMAGE = "image"
    HTML = "html"


class PackageType(str, Enum):
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"
    CUSTOM = "custom"

    @property
    def watermarked(self) -> bool:
        return self is PackageType.FREE


class FieldMapping(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_key: str = Field(validation_alias=AliasChoices("source_key", "sourceKey", "csvColumn"))
    x: int
    y: int
    font_ref: str | None = Field(default=None, validation_alias=AliasChoices("font_ref", "fontRef", "font"))
    font_size: float = Field(default=36, validation_alias=AliasChoices("font_size", "fontSize"))
    color: str | list[float] = "#000000"
    max_width: float | None = Field(default=None, validation_alias=AliasChoices("max_width", "maxWidth", "width"))
    align: Literal["left", "center", "right"] = "left"

    @field_validator("font_size")
    @classmethod
    def _positive_size(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("fontSize must be greater than 0")
        return value

    @field_validator("align", mode="before")
    @classmethod
    def _lower_align(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class CertificateTemplate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    type: TemplateType = TemplateType.IMAGE
    background_ref: str = Field(
        default="", validation_alias=AliasChoices("background_ref", "backgroundRef", "imagePath")
    )
    fields: list[FieldMapping] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class GenerationOptions(BaseModel):
    package_type: PackageType = PackageType.FREE
    concurrency: int = Field(default=1, ge=1)


class BackgroundAsset(BaseModel):
    data: bytes
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class FontAsset(BaseModel):
    name: str
    data: bytes
    format: Literal["ttf", "otf"]


class GeneratedCertificate(BaseModel):
    name: str
    path: Path
    record: DataRecord


class GenerationResult(BaseModel):
    batch_id: str
    batch_dir: Path
    certificates: list[GeneratedCertificate]
    zip_path: Path

    @property
    def count(self) -> int:
        return len(self.certificates)

    def manifest(self) -> list[dict[str, Any]]:
        return [{"outputFileName": cert.name, "sourceRecord": cert.record} for cert in self.certificates]
