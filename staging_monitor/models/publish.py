"""
Publish Models
Current state of the destination document and the outcome of a publish.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

PublishStatus = Literal["published", "unchanged", "stale"]


class StoredDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str = ""
    exists: bool = False
    # Opaque compare-and-swap token handed back on write
    revision: Optional[str] = None


class PublishResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: PublishStatus
    revision: Optional[str] = None
    commit_sha: str = ""
