"""Pydantic schemas for the import API."""

from pydantic import BaseModel

from promptvault.models import ClassifiedError, RecoveryAction


class ImportStartedResponse(BaseModel):
    session_id: str


class ClassifyErrorRequest(BaseModel):
    message: str
    file: str | None = None
    line: int | None = None


class ClassifyErrorResponse(BaseModel):
    error: ClassifiedError
    user_message: str
    actions: list[RecoveryAction]
