"""Events emitted by reconciliation controllers.

The field names follow the JSON emitted by Flux controllers, so an event
body received over HTTP validates directly into an Event.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

SEVERITY_INFO = "info"
SEVERITY_ERROR = "error"

# Reserved metadata keys
META_COMMIT_STATUS_KEY = "commit_status"
META_COMMIT_STATUS_UPDATE_VALUE = "update"
META_SUMMARY_KEY = "summary"


class ObjectReference(BaseModel):
    """Reference to the object an event is about."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = Field(default="", description="Kind of the involved object")
    name: str = Field(default="", description="Name of the involved object")
    namespace: str = Field(default="", description="Namespace of the involved object")
    uid: str = Field(default="")
    api_version: str = Field(default="", alias="apiVersion")
    resource_version: str = Field(default="", alias="resourceVersion")
    field_path: str = Field(default="", alias="fieldPath")


class Event(BaseModel):
    """A lifecycle event reported by a controller."""

    model_config = ConfigDict(populate_by_name=True)

    involved_object: ObjectReference = Field(
        default_factory=ObjectReference, alias="involvedObject"
    )
    severity: str = Field(default=SEVERITY_INFO, description="info or error")
    timestamp: datetime
    message: str = ""
    reason: str = ""
    metadata: dict[str, str] | None = Field(
        default=None, description="Arbitrary string metadata attached by the controller"
    )
    reporting_controller: str = Field(default="", alias="reportingController")
    reporting_instance: str = Field(default="", alias="reportingInstance")

    def has_metadata(self, key: str, value: str) -> bool:
        return bool(self.metadata) and self.metadata.get(key) == value

    @property
    def is_commit_status_update(self) -> bool:
        return self.has_metadata(META_COMMIT_STATUS_KEY, META_COMMIT_STATUS_UPDATE_VALUE)
