from tortoise import fields
from .base import BaseModel


class Image(BaseModel):
    # Perceptual hash of the pixel data; permanent identity of the image
    hash = fields.CharField(max_length=128, pk=True)
    alt = fields.CharField(max_length=512, null=True)
    description = fields.TextField(null=True)
    # Set while the image has no labels, drives the retention sweep
    unlabeled_since = fields.DatetimeField(null=True, index=True)

    class Meta:
        table = "image"


class ImageFile(BaseModel):
    id = fields.IntField(pk=True)
    image = fields.ForeignKeyField("models.Image", related_name="files", on_delete=fields.CASCADE)
    src = fields.CharField(max_length=1024, unique=True)
    width = fields.IntField()
    height = fields.IntField()

    class Meta:
        table = "image_file"


class ImageLabel(BaseModel):
    id = fields.IntField(pk=True)
    image = fields.ForeignKeyField("models.Image", related_name="labels", on_delete=fields.CASCADE)
    label = fields.CharField(max_length=128, index=True)
    index = fields.IntField(default=0)

    class Meta:
        table = "image_labels"
        unique_together = ("image", "label")


class EntityImage(BaseModel):
    """Structured reference from a domain record (e.g. a plant) to an image."""

    id = fields.IntField(pk=True)
    entity_type = fields.CharField(max_length=64)
    entity_id = fields.CharField(max_length=128)
    image = fields.ForeignKeyField("models.Image", related_name="entities", on_delete=fields.CASCADE)
    usage = fields.CharField(max_length=64, null=True)

    class Meta:
        table = "entity_images"
        unique_together = ("entity_type", "entity_id", "image")
