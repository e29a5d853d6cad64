"""
Error types raised by the conversation storage layer
"""


class StoreError(Exception):
    """Base class for document store and media failures"""


class FetchFailed(StoreError):
    """A read returned no value or a value of the wrong shape"""


class WriteFailed(StoreError):
    """An underlying write reported an error"""


class NotFound(StoreError):
    """Logical absence: no user record, no conversation"""


class Conflict(StoreError):
    """A conditional write was rejected because the stored value changed"""


class TransientStoreError(StoreError):
    """A backend failure worth retrying (unavailable, deadline exceeded...)"""


class MediaUploadFailed(StoreError):
    """Uploading bytes to blob storage failed"""


class MediaUrlFailed(StoreError):
    """A download URL could not be resolved for a blob path"""
