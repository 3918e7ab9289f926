"""Alertmanager alert model."""

from typing import Any, Literal

from pydantic import BaseModel, Field

STATUS_FIRING = "firing"


class Alert(BaseModel):
    """A single alert in the shape accepted by Alertmanager webhooks."""

    status: Literal["firing"] = STATUS_FIRING
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.labels.get("alertname", "")


def alerts_payload(alerts: list[Alert]) -> list[dict[str, Any]]:
    """Serialize alerts as the JSON array posted to Alertmanager."""
    return [alert.model_dump(mode="json") for alert in alerts]
