# =============================================================================
# artfolio/errors.py - Error Taxonomy
# =============================================================================
# Every failure a service raises on purpose is an ArtfolioError. The HTTP
# layer maps `status_code` to the response; services never build responses.
#
#   ValidationError               400  malformed or out-of-policy input
#   ImageProcessingError          400  decode / format / size failure
#   AuthenticationError           401
#   PermissionDeniedError         403
#   NotFoundOrUnauthorizedError   404  missing, or owned by someone else
#   ConflictError                 409  duplicate relationship or stale state
#   InternalError                 500  everything else
# =============================================================================

from typing import Any


class ArtfolioError(Exception):
    """
    Base exception for the service layer.

    Carries a human-readable message, a machine-readable code and the
    transport status the calling layer should use.
    """

    status_code = 500
    default_code = "ARTFOLIO_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Taxonomy roots
# =============================================================================

class ValidationError(ArtfolioError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class ImageProcessingError(ArtfolioError):
    """The uploaded image could not be used. The message describes the input."""

    status_code = 400
    default_code = "IMAGE_PROCESSING_FAILED"


class AuthenticationError(ArtfolioError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class PermissionDeniedError(ArtfolioError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundOrUnauthorizedError(ArtfolioError):
    """
    The entity does not exist, or it exists but is not owned by the caller.

    The two cases share one type and one message so callers cannot probe for
    other users' resources.
    """

    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(ArtfolioError):
    status_code = 409
    default_code = "CONFLICT"


class InternalError(ArtfolioError):
    status_code = 500
    default_code = "INTERNAL_ERROR"


# =============================================================================
# Image pipeline
# =============================================================================

class DecodeError(ImageProcessingError):
    default_code = "IMAGE_DECODE_ERROR"


class ImageTooLargeError(ImageProcessingError):
    default_code = "FILE_TOO_LARGE"

    def __init__(self, size: int, max_size: int):
        super().__init__(
            f"Image size {size} bytes exceeds maximum allowed size of {max_size} bytes",
            details={"size": size, "max_size": max_size},
        )


class UnsupportedFormatError(ImageProcessingError):
    default_code = "INVALID_FILE_TYPE"

    def __init__(self, detected: str, allowed: list[str]):
        super().__init__(
            f"Unsupported image format: {detected}. Allowed formats: {', '.join(allowed)}",
            details={"format": detected, "allowed_formats": allowed},
        )
        self.detected = detected


class StorageError(InternalError):
    default_code = "STORAGE_ERROR"


# =============================================================================
# Lookups
# =============================================================================

class OwnerNotFoundError(NotFoundOrUnauthorizedError):
    default_code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}", details={"user_id": user_id})


class TargetNotFoundError(NotFoundOrUnauthorizedError):
    default_code = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}", details={"user_id": user_id})


class ArtworkNotFoundError(NotFoundOrUnauthorizedError):
    default_code = "ARTWORK_NOT_FOUND"

    def __init__(self, artwork_id: str):
        super().__init__(
            f"Artwork not found or not public: {artwork_id}",
            details={"artwork_id": artwork_id},
        )


class CurationNotFoundError(NotFoundOrUnauthorizedError):
    default_code = "CURATION_NOT_FOUND"

    def __init__(self, curation_id: str):
        super().__init__(f"Curation not found: {curation_id}", details={"curation_id": curation_id})


class ArtworkNotInCurationError(NotFoundOrUnauthorizedError):
    default_code = "ARTWORK_NOT_IN_CURATION"

    def __init__(self, artwork_id: str):
        super().__init__(
            f"Artwork not found in curation: {artwork_id}",
            details={"artwork_id": artwork_id},
        )


class NotFollowingError(NotFoundOrUnauthorizedError):
    default_code = "NOT_FOLLOWING"

    def __init__(self, following_id: str):
        super().__init__("Not following this user", details={"user_id": following_id})


# =============================================================================
# Validation
# =============================================================================

class InvalidArtworkSetError(ValidationError):
    default_code = "INVALID_ARTWORK_SET"

    def __init__(self, requested: int, resolved: int):
        super().__init__(
            "One or more artworks not found, not public, or listed twice",
            details={"requested": requested, "resolved": resolved},
        )


class InvalidOrderError(ValidationError):
    default_code = "INVALID_ORDER"

    def __init__(self, missing: list[str], extra: list[str]):
        super().__init__(
            "Invalid artwork order: missing or extra artwork IDs",
            details={"missing": missing, "extra": extra},
        )


class SelfFollowError(ValidationError):
    default_code = "SELF_FOLLOW"

    def __init__(self):
        super().__init__("Cannot follow yourself")


# =============================================================================
# Conflicts
# =============================================================================

class DuplicateArtworkError(ConflictError):
    default_code = "ARTWORK_ALREADY_IN_CURATION"

    def __init__(self, artwork_id: str):
        super().__init__(
            f"Artwork already exists in curation: {artwork_id}",
            details={"artwork_id": artwork_id},
        )


class AlreadyFollowingError(ConflictError):
    default_code = "ALREADY_FOLLOWING"

    def __init__(self, following_id: str):
        super().__init__("Already following this user", details={"user_id": following_id})


class LikeConflictError(ConflictError):
    default_code = "LIKE_CONFLICT"


class StaleCurationError(ConflictError):
    """The curation changed between read and write; the caller should retry."""

    default_code = "CURATION_MODIFIED"

    def __init__(self, curation_id: str):
        super().__init__(
            f"Curation was modified concurrently: {curation_id}",
            details={"curation_id": curation_id},
        )


class UserExistsError(ConflictError):
    default_code = "USER_EXISTS"
