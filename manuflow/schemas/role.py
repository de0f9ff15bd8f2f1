from pydantic import BaseModel


class RolePermissionsUpdate(BaseModel):
    permissions: dict[str, list[str]]


class RolePermissionsResponse(BaseModel):
    role: str
    version: int
    permissions: dict[str, list[str]]


class RegistryResponse(BaseModel):
    permissions: dict[str, dict[str, list[str]]]
