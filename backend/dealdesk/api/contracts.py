from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field, model_validator


def _required_name(value: str) -> str:
    trimmed = " ".join(value.split())
    if not trimmed:
        raise ValueError("must not be blank")
    return trimmed


def _optional_name(value: str | None) -> str | None:
    if value is None:
        return None
    return " ".join(value.split()) or None


RequiredName = Annotated[str, Field(min_length=1, max_length=200), AfterValidator(_required_name)]
OptionalName = Annotated[str | None, Field(max_length=200), AfterValidator(_optional_name)]


class ClientCreateRequest(BaseModel):
    client_name: RequiredName


class ClientUpdateRequest(BaseModel):
    client_name: RequiredName


class ResponsibleCreateRequest(BaseModel):
    responsible_name: RequiredName
    is_active: bool = True


class ResponsibleUpdateRequest(BaseModel):
    responsible_name: RequiredName | None = None
    is_active: bool | None = None


class OpportunityCreateRequest(BaseModel):
    """A client and a responsible are each given by id or by name (created on first use)."""

    opportunity_name: RequiredName
    description: str | None = Field(default=None, max_length=5000)
    client_id: int | None = Field(default=None, gt=0)
    client_name: OptionalName = None
    responsible_id: int | None = Field(default=None, gt=0)
    responsible_name: OptionalName = None
    status: str = Field(default="OPEN", min_length=1, max_length=40)

    @model_validator(mode="after")
    def _require_references(self) -> "OpportunityCreateRequest":
        if self.client_id is None and self.client_name is None:
            raise ValueError("client_id or client_name is required")
        if self.responsible_id is None and self.responsible_name is None:
            raise ValueError("responsible_id or responsible_name is required")
        return self


class OpportunityUpdateRequest(BaseModel):
    opportunity_name: RequiredName | None = None
    description: str | None = Field(default=None, max_length=5000)
    client_id: int | None = Field(default=None, gt=0)
    responsible_id: int | None = Field(default=None, gt=0)
    status: str | None = Field(default=None, min_length=1, max_length=40)


class GenerateDspRequest(BaseModel):
    opportunity_id: int = Field(..., gt=0, strict=True)


class GenerateArtifactRequest(BaseModel):
    opportunity_id: int = Field(..., gt=0, strict=True)
    artifact_id: int = Field(..., gt=0, strict=True)
