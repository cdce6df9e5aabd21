from tortoise import fields
from .base import BaseModel


class CleanupLog(BaseModel):
    id = fields.IntField(pk=True)
    type = fields.CharField(max_length=64)
    deleted_images = fields.IntField(default=0)
    deleted_files = fields.IntField(default=0)
    orphaned_files = fields.IntField(default=0)
    errors = fields.JSONField(null=True)
    status = fields.CharField(max_length=16)
    duration_ms = fields.IntField(default=0)

    class Meta:
        table = "cleanup_log"
