"""
Error taxonomy for imagestore.

Every error carries a stable ``code`` that ends up in result models, and a
``retryable`` flag so callers can tell "try again later" apart from "this
request will never succeed".
"""


class ImageStoreError(Exception):
    code = "internal_error"
    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.context = context


class InvalidUpload(ImageStoreError):
    code = "invalid_upload"


class DimensionOutOfBounds(InvalidUpload):
    code = "invalid_dimensions"


class TranscodeUnavailable(ImageStoreError):
    code = "transcode_unavailable"


class DuplicateImage(ImageStoreError):
    code = "duplicate"


class FileNameUnavailable(ImageStoreError):
    code = "filename_unavailable"
    retryable = True


class LockUnavailable(ImageStoreError):
    code = "lock_unavailable"
    retryable = True


class ContentDocumentError(ImageStoreError):
    code = "content_document_error"


class StorageError(ImageStoreError):
    code = "storage_error"
    retryable = True
