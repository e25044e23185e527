from pydantic import BaseModel, ConfigDict


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    count: int
    total_pages: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 42,
                "page": 1,
                "limit": 20,
                "count": 20,
                "total_pages": 3,
                "has_next": True,
            }
        }
    )


class ValidationIssueOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[ValidationIssueOut] | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "bad_request",
                    "message": "Changing type is not allowed for an existing bill",
                    "request_id": "8d8f2b00-6c79-4a45-8ff4-b0a5f2bc4bc2",
                    "path": "/billing/bill-id",
                    "details": None,
                }
            }
        }
    )
