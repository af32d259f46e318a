from fastapi import HTTPException, status


class CertFlowException(HTTPException):
    code = "internal_error"

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(CertFlowException):
    code = "not_found"

    def __init__(self, resource: str, resource_id: str | None = None):
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class PermissionDeniedError(CertFlowException):
    code = "forbidden"

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class BadRequestError(CertFlowException):
    code = "bad_request"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class ConflictError(CertFlowException):
    code = "conflict"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class StorageUnavailableError(CertFlowException):
    code = "storage_unavailable"

    def __init__(self, detail: str | None = None):
        msg = "Storage backend unavailable"
        if detail:
            msg += f" - {detail}"
        super().__init__(detail=msg, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


# ---------- Workflow errors ----------


class WorkflowError(CertFlowException):
    """Base for business-rule failures raised by the workflow core."""


class IllegalTransitionError(WorkflowError):
    code = "illegal_transition"

    def __init__(self, entity: str, current: str, target: str, reason: str | None = None):
        detail = f"Cannot move {entity} from '{current}' to '{target}'"
        if reason:
            detail += f": {reason}"
        self.current = current
        self.target = target
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class UnauthorizedTransitionError(WorkflowError):
    code = "unauthorized"

    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class MissingPayloadError(WorkflowError):
    code = "missing_payload"

    def __init__(self, field: str, reason: str | None = None):
        self.field = field
        detail = reason or f"'{field}' is required for this action"
        super().__init__(detail=detail, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class StaleStateError(WorkflowError):
    code = "stale_state"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            detail=f"{entity} '{entity_id}' was modified by another request; reload and retry",
            status_code=status.HTTP_409_CONFLICT,
        )


class RoleMismatchError(WorkflowError):
    code = "role_mismatch"

    def __init__(self, required: str, actual: str):
        super().__init__(
            detail=f"User must have role '{required}' (has '{actual}')",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class NotTeamMemberError(WorkflowError):
    code = "not_team_member"

    def __init__(self, user_id: str, project_id: str):
        super().__init__(
            detail=f"User '{user_id}' is not a member of project '{project_id}' team",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class ChainInProgressError(WorkflowError):
    code = "chain_in_progress"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            detail=f"An approval chain is already in progress for {entity} '{entity_id}'",
            status_code=status.HTTP_409_CONFLICT,
        )
