from fastapi import HTTPException, status


class VoteTrackerError(HTTPException):
    """Base for the errors a caller can recover from; rendered by FastAPI."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "error"
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(
            status_code=self.status_code,
            detail={"error": self.error_code, "message": self.message},
        )


class RoomNotFound(VoteTrackerError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "room_not_found"
    default_message = "Room not found"


class RoomClosed(VoteTrackerError):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "room_closed"
    default_message = "Room closed"


class VoteValidationError(VoteTrackerError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"
    default_message = "Invalid request"


class StaleVoteIds(VoteTrackerError):
    # Same status as RoomNotFound; clients tell them apart by error_code and resubmit.
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "stale_vote_ids"
    default_message = "Votes to update no longer exist"


class RoomCodeExhausted(VoteTrackerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "room_code_exhausted"
    default_message = "Could not generate unique room code"
