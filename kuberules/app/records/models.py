"""
Stored object models for kuberules.
"""

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


RULE_GROUP = "casbin.grepplabs.com"
RULE_VERSION = "v1alpha1"
RULE_API_VERSION = f"{RULE_GROUP}/{RULE_VERSION}"
RULE_KIND = "Rule"

VALUE_FIELDS = ("v0", "v1", "v2", "v3", "v4", "v5")


class ObjectMeta(BaseModel):
    """Store-managed envelope metadata."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    namespace: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = Field(default=None, alias="resourceVersion")
    creation_timestamp: Optional[datetime] = Field(default=None, alias="creationTimestamp")
    deletion_timestamp: Optional[datetime] = Field(default=None, alias="deletionTimestamp")
    finalizers: Optional[List[str]] = None


class StoredObject(BaseModel):
    """A named, namespaced, optionally labeled object."""

    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default="", alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def is_deleting(self) -> bool:
        """True once the store has soft-deleted the object."""
        return self.metadata.deletion_timestamp is not None

    def to_manifest(self) -> Dict[str, Any]:
        """Serialize to the store's wire representation."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RuleSpec(BaseModel):
    """Positional rule fields."""

    ptype: str = ""
    v0: str = ""
    v1: str = ""
    v2: str = ""
    v3: str = ""
    v4: str = ""
    v5: str = ""

    def to_manifest(self) -> Dict[str, str]:
        data = {"ptype": self.ptype}
        for field_name in VALUE_FIELDS:
            value = getattr(self, field_name)
            if value:
                data[field_name] = value
        return data


class RuleObject(StoredObject):
    """Stored envelope holding one rule."""

    api_version: str = Field(default=RULE_API_VERSION, alias="apiVersion")
    kind: str = RULE_KIND
    spec: RuleSpec = Field(default_factory=RuleSpec)

    def to_manifest(self) -> Dict[str, Any]:
        data = super().to_manifest()
        data["spec"] = self.spec.to_manifest()
        return data


T = TypeVar("T", bound=StoredObject)


class ObjectList(BaseModel, Generic[T]):
    """Typed listing plus the version it was read at."""

    items: List[T] = Field(default_factory=list)
    resource_version: Optional[str] = None
