# Import all models for Tortoise ORM registration
from .base import BaseModel
from .image import Image, ImageFile, ImageLabel, EntityImage
from .cleanup import CleanupLog

__all__ = [
    "BaseModel",
    "Image",
    "ImageFile",
    "ImageLabel",
    "EntityImage",
    "CleanupLog",
]
