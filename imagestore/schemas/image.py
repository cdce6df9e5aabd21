from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import List, Optional


class UploadedFile(BaseModel):
    """An upload handed over by the API layer, either buffered or spooled to disk."""

    filename: str
    mimetype: str
    data: Optional[bytes] = None
    temp_path: Optional[str] = None

    @model_validator(mode="after")
    def _has_content(self):
        if self.data is None and self.temp_path is None:
            raise ValueError("either data or temp_path is required")
        return self


class VariantOut(BaseModel):
    src: str
    width: int
    height: int


class SaveImageResult(BaseModel):
    success: bool
    hash: str | None = None
    src: str | None = None
    width: int | None = None
    height: int | None = None
    warnings: List[str] = Field(default_factory=list)
    failed_sizes: List[str] = Field(default_factory=list)
    alternate_failures: List[str] = Field(default_factory=list)
    code: str | None = None
    error: str | None = None


class ImageUsage(BaseModel):
    exists: bool
    used_in_entities: List[str] = Field(default_factory=list)
    used_in_labels: List[str] = Field(default_factory=list)
    used_in_featured_slot_a: bool = False
    used_in_featured_slot_b: bool = False
    warnings: List[str] = Field(default_factory=list)

    @property
    def in_use(self) -> bool:
        return bool(
            self.used_in_entities
            or self.used_in_labels
            or self.used_in_featured_slot_a
            or self.used_in_featured_slot_b
        )


class DeleteImageResult(BaseModel):
    success: bool
    code: str
    retryable: bool = False
    deleted_file_count: int = 0
    errors: List[str] = Field(default_factory=list)
    usage: ImageUsage | None = None


class CleanupResult(BaseModel):
    success: bool = False
    deleted_images: int = 0
    deleted_files: int = 0
    orphaned_files: int = 0
    deleted_backups: int = 0
    errors: List[str] = Field(default_factory=list)
    backup_path: str | None = None
    duration_ms: int = 0


class LabeledImage(BaseModel):
    hash: str
    alt: str | None = None
    description: str | None = None
    files: List[VariantOut] = Field(default_factory=list)


class CleanupSummary(BaseModel):
    ran_at: datetime
    status: str
    deleted_images: int = 0
    deleted_files: int = 0
    orphaned_files: int = 0
    duration_ms: int = 0
    errors: List[str] = Field(default_factory=list)


class StorageStats(BaseModel):
    """Image, disk and retention sweep figures for the storage dashboard."""

    total_images: int = 0
    labeled_images: int = 0
    unlabeled_images: int = 0
    unlabeled_over_retention: int = 0
    total_files: int = 0
    files_on_disk: int = 0
    orphaned_files: int = 0
    total_size_mb: float = 0.0
    retention_days: int = 0
    last_cleanup: CleanupSummary | None = None
