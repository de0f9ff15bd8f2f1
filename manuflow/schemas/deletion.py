import uuid

from pydantic import BaseModel


class DeletionResponse(BaseModel):
    detail: str
    strategy: str
    entity_id: uuid.UUID
    deleted: int
    reassigned: int = 0
    reassigned_to: uuid.UUID | None = None
    deleted_by_type: dict[str, int] = {}
    activities_archived: int = 0
