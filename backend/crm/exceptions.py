"""
Error taxonomy for the contact engine.

Every error carries a stable `error` code and the HTTP status the API layer
maps it to. Client errors are never retried; `DuplicateKeyRace` is retried
once by the orchestrator and `StoreUnavailable` is raised only after the
store layer has exhausted its own retries.
"""

from typing import Any, Dict, Optional


class CRMError(Exception):
    """Base error with a stable code and HTTP status."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.meta = dict(meta or {})

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "success": False,
            "error": self.error,
            "message": self.message,
        }
        if self.meta:
            payload["details"] = self.meta
        return payload


# ============================================================================
# CLIENT ERRORS
# ============================================================================

class TenantNotFound(CRMError):
    status_code = 404
    error = "tenant_not_found"

    def __init__(self, tenant_id):
        super().__init__(f"Tenant {tenant_id} not found", {"tenant_id": str(tenant_id)})
        self.tenant_id = tenant_id


class ContactNotFound(CRMError):
    status_code = 404
    error = "contact_not_found"

    def __init__(self, contact_id):
        super().__init__(f"Contact {contact_id} not found", {"contact_id": str(contact_id)})
        self.contact_id = contact_id


class CompanyNotFound(CRMError):
    status_code = 404
    error = "company_not_found"

    def __init__(self, company_id):
        super().__init__(f"Company {company_id} not found", {"company_id": str(company_id)})
        self.company_id = company_id


class InvalidStageForPipeline(CRMError):
    status_code = 422
    error = "invalid_stage_for_pipeline"

    def __init__(self, pipeline_type: str, stage: Optional[str], allowed=None, message: Optional[str] = None):
        allowed = list(allowed or [])
        super().__init__(
            message or f"Stage '{stage}' is not valid for pipeline '{pipeline_type}'",
            {"pipeline_type": pipeline_type, "stage": stage, "allowed": allowed}
        )
        self.pipeline_type = pipeline_type
        self.stage = stage
        self.allowed = allowed


class InvalidPipelineType(InvalidStageForPipeline):
    error = "invalid_pipeline_type"

    def __init__(self, pipeline_type: str, allowed=None):
        super().__init__(
            pipeline_type,
            None,
            allowed,
            message=f"Pipeline '{pipeline_type}' is not a known pipeline type"
        )


class InvalidCompanyName(CRMError, ValueError):
    status_code = 422
    error = "invalid_company_name"

    def __init__(self, name):
        super().__init__("Company name must not be empty", {"name": name})


class DuplicateContactEmail(CRMError):
    status_code = 409
    error = "duplicate_contact_email"

    def __init__(self, email: str, existing_contact_id):
        super().__init__(
            f"Another contact already uses {email}",
            {"email": email, "existing_contact_id": str(existing_contact_id)}
        )
        self.email = email
        self.existing_contact_id = existing_contact_id


# ============================================================================
# STORE ERRORS
# ============================================================================

class DuplicateKeyRace(CRMError):
    """A concurrent insert won the race for a unique key."""

    status_code = 409
    error = "duplicate_key_race"

    def __init__(self, entity: str, key: Dict[str, Any]):
        super().__init__(f"Concurrent insert detected for {entity}", {"entity": entity, **key})
        self.entity = entity
        self.key = key


class StoreUnavailable(CRMError):
    """Transient store failures persisted past the retry budget."""

    status_code = 503
    error = "store_unavailable"

    def __init__(self, operation: str, attempts: int, cause: Optional[BaseException] = None):
        reason = type(cause).__name__ if cause else "unknown"
        super().__init__(
            f"Store operation '{operation}' failed after {attempts} attempt(s): {reason}",
            {"operation": operation, "attempts": attempts}
        )
        self.operation = operation
        self.attempts = attempts
