from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .utils import is_markdown_file


class ChangeType(str, Enum):
    ADD = "add"
    CHANGE = "change"
    DELETE = "delete"
    MANUAL = "manual"


@dataclass(frozen=True)
class ChangeEvent:
    """A file change (or manual trigger) handed from the watcher to the dispatcher."""

    change_type: ChangeType
    file_name: str

    @property
    def concerns_markdown(self) -> bool:
        return is_markdown_file(self.file_name)


class CreateDocumentRequest(BaseModel):
    filename: Optional[str] = None
    content: Optional[str] = None
    frontmatter: Optional[Dict[str, Any]] = None


class UpdateDocumentRequest(BaseModel):
    content: Optional[str] = None
    frontmatter: Optional[Dict[str, Any]] = None


class TriggerBuildRequest(BaseModel):
    service: Optional[str] = None


class DocumentEnvelope(BaseModel):
    success: bool = True
    data: Dict[str, Any]


class DocumentListEnvelope(BaseModel):
    success: bool = True
    data: List[Dict[str, Any]]


class TriggerBuildResponse(BaseModel):
    success: bool = True
    message: str


class StatusSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "running"
    cache_last_updated: Optional[datetime] = Field(default=None, alias="cacheLastUpdated")
    cache_last_invalidated: Optional[datetime] = Field(default=None, alias="cacheLastInvalidated")
    configured_webhooks: List[str] = Field(default_factory=list, alias="configuredWebhooks")
    watching_directory: str = Field(alias="watchingDirectory")
    cached_files: int = Field(default=0, alias="cachedFiles")
