"""Knowledge descriptor schema.

A descriptor is the declarative definition of one knowledge source: its id,
matching keywords, priority, and which backend retrieves its content. JSON
documents use camelCase keys (``backendKind``, ``cacheTtlSeconds``); the
snake_case field names are accepted as well.
"""

from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from knowledge_engine.models.errors import DescriptorValidationError

DEFAULT_PRIORITY = 50


class BackendKind(str, Enum):
    """Backend that retrieves a source's content."""

    STATIC = "static"
    HTTP = "http"
    REMOTE_AGENT = "remoteAgent"
    DOCUMENT_STORE = "documentStore"
    FILE = "file"
    CUSTOM = "custom"


# Older descriptor documents name backends after the service they used
_LEGACY_KINDS = {
    "a2a": BackendKind.REMOTE_AGENT,
    "remote_agent": BackendKind.REMOTE_AGENT,
    "cosmos": BackendKind.DOCUMENT_STORE,
    "document_store": BackendKind.DOCUMENT_STORE,
}


class _Block(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StaticConfig(_Block):
    text: str
    suggestions: list[str] = Field(default_factory=list)


class HttpConfig(_Block):
    endpoint: str = Field(min_length=1)
    method: Literal["GET", "POST"] = "GET"
    secret_env_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("secretEnvName", "secret_env_name", "secretRef"),
    )
    request_body_template: str | None = Field(
        default=None,
        validation_alias=AliasChoices("requestBodyTemplate", "request_body_template"),
    )
    cache_ttl_seconds: float = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("cacheTtlSeconds", "cache_ttl_seconds"),
    )

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class RemoteAgentConfig(_Block):
    agent_id: str | None = Field(
        default=None, validation_alias=AliasChoices("agentId", "agent_id", "target")
    )
    capability: str = "knowledge"


class DocumentStoreConfig(_Block):
    query: str = Field(min_length=1)
    params: list[Any] | dict[str, Any] = Field(default_factory=list)
    database: str | None = None
    container: str | None = None
    top_n: int = Field(default=5, ge=1, validation_alias=AliasChoices("topN", "top_n"))


class FileConfig(_Block):
    paths: list[str] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _normalize_paths(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        if "paths" not in data:
            for key in ("path", "filePath"):
                if key in data:
                    data["paths"] = data.pop(key)
                    break
        if isinstance(data.get("paths"), str):
            data["paths"] = [data["paths"]]
        return data


class KnowledgeDescriptor(BaseModel):
    """Validated, normalized definition of one knowledge source."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True
    backend_kind: BackendKind = Field(
        validation_alias=AliasChoices("backendKind", "backend_kind", "provider")
    )

    static: StaticConfig | None = None
    http: HttpConfig | None = None
    remote_agent: RemoteAgentConfig | None = Field(
        default=None, validation_alias=AliasChoices("remoteAgent", "remote_agent")
    )
    document_store: DocumentStoreConfig | None = Field(
        default=None, validation_alias=AliasChoices("documentStore", "document_store")
    )
    file: FileConfig | None = None
    custom: dict[str, Any] | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)
    version: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and not data.get("name"):
            data = dict(data)
            data["name"] = data.get("id")
        return data

    @field_validator("backend_kind", mode="before")
    @classmethod
    def _legacy_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _LEGACY_KINDS.get(value, value)
        return value

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for keyword in value:
            normalized = keyword.strip().lower()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    @model_validator(mode="after")
    def _require_backend_block(self) -> "KnowledgeDescriptor":
        if self.backend_kind is BackendKind.CUSTOM:
            return self
        if self.backend_config is None:
            raise ValueError(
                f"backendKind '{self.backend_kind.value}' requires a "
                f"'{self.backend_kind.value}' configuration block"
            )
        return self

    @property
    def backend_config(self) -> Any:
        """The configuration block matching ``backend_kind``; others are ignored."""
        return {
            BackendKind.STATIC: self.static,
            BackendKind.HTTP: self.http,
            BackendKind.REMOTE_AGENT: self.remote_agent,
            BackendKind.DOCUMENT_STORE: self.document_store,
            BackendKind.FILE: self.file,
            BackendKind.CUSTOM: self.custom or {},
        }[self.backend_kind]

    @property
    def metadata_suggestions(self) -> list[str]:
        suggestions = self.metadata.get("suggestions") or []
        return [str(s) for s in suggestions] if isinstance(suggestions, list) else []


def validate_descriptor(raw: Any) -> KnowledgeDescriptor:
    """Validate and normalize a raw descriptor document.

    Args:
        raw: Parsed descriptor document (a mapping)

    Returns:
        KnowledgeDescriptor with defaults applied

    Raises:
        DescriptorValidationError: If required fields are missing, the backend
            kind is unknown, or the matching backend block is absent/malformed
    """
    if isinstance(raw, KnowledgeDescriptor):
        return raw

    if not isinstance(raw, Mapping):
        raise DescriptorValidationError(
            f"Knowledge descriptor must be a mapping, got {type(raw).__name__}"
        )

    raw_id = raw.get("id")
    descriptor_id = raw_id if isinstance(raw_id, str) else None

    try:
        return KnowledgeDescriptor.model_validate(raw)
    except ValidationError as e:
        field_errors = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise DescriptorValidationError(
            f"Invalid knowledge descriptor {descriptor_id!r}: {'; '.join(field_errors)}",
            descriptor_id=descriptor_id,
            field_errors=field_errors,
        ) from e
