"""Alertmanager notifier.

Turns controller events into firing alerts and posts them to every
configured Alertmanager endpoint.
"""

import asyncio
import logging
import ssl
from collections.abc import Mapping
from typing import Any, Callable

from fluxalert import relabel
from fluxalert.endpoints import parse_endpoints
from fluxalert.errors import DeliveryError, PostMessageError, RelabelError
from fluxalert.models.alert import Alert, alerts_payload
from fluxalert.models.event import META_SUMMARY_KEY, Event
from fluxalert.notifiers.base import BaseNotifier
from fluxalert.transport import DEFAULT_TIMEOUT, PostMessage, post_message

logger = logging.getLogger(__name__)

ALERTNAME_PREFIX = "Flux"

# Marks a per-call timeout that falls back to the notifier's own.
DEFAULT = object()


def title_case(reason: str) -> str:
    """Capitalize every whitespace-delimited word and join them.

    "build error" becomes "BuildError".
    """
    return "".join(word[:1].upper() + word[1:].lower() for word in reason.split())


def title_case_preserve(reason: str) -> str:
    """Like title_case but leaves the rest of each word untouched.

    "HealthCheckFailed" stays "HealthCheckFailed".
    """
    return "".join(word[:1].upper() + word[1:] for word in reason.split())


class AlertmanagerNotifier(BaseNotifier):
    """Posts events as alerts to one or more Alertmanager endpoints.

    The configuration is validated once and not changed afterwards, so an
    instance can be shared by concurrent calls to post().
    """

    def __init__(
        self,
        address: str,
        proxy_url: str | None = None,
        cert_pool: ssl.SSLContext | None = None,
        relabel_config: str = "",
        *,
        relabeler: relabel.Relabeler = relabel.process,
        title_caser: Callable[[str], str] = title_case,
        post_message: PostMessage = post_message,
        timeout: float | None = DEFAULT_TIMEOUT,
    ):
        self._endpoints = parse_endpoints(address)
        self._relabel_config = relabel.load_relabel_config(relabel_config)
        self._proxy_url = proxy_url or None
        self._cert_pool = cert_pool
        self._relabeler = relabeler
        self._title_caser = title_caser
        self._post_message = post_message
        self._timeout = timeout

        logger.info(
            f"Alertmanager notifier configured with {len(self._endpoints)} endpoint(s), "
            f"relabel={'on' if self.perform_relabel else 'off'}"
        )

    @property
    def name(self) -> str:
        return "alertmanager"

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    @property
    def proxy_url(self) -> str | None:
        return self._proxy_url

    @property
    def cert_pool(self) -> ssl.SSLContext | None:
        return self._cert_pool

    @property
    def relabel_config(self) -> relabel.RelabelRules | None:
        return self._relabel_config

    @property
    def perform_relabel(self) -> bool:
        return self._relabel_config is not None

    def build_alert(self, event: Event) -> Alert | None:
        """Map an event to an alert, or None for commit status updates."""
        if event.is_commit_status_update:
            return None

        labels = dict(event.metadata or {})

        annotations = {"message": event.message}
        if META_SUMMARY_KEY in labels:
            annotations["summary"] = labels.pop(META_SUMMARY_KEY)

        obj = event.involved_object
        labels["alertname"] = ALERTNAME_PREFIX + obj.kind + self._title_caser(event.reason)
        labels["severity"] = event.severity
        labels["reason"] = event.reason
        labels["timestamp"] = str(event.timestamp)

        labels["kind"] = obj.kind
        labels["name"] = obj.name
        labels["namespace"] = obj.namespace
        labels["reportingcontroller"] = event.reporting_controller

        return Alert(labels=labels, annotations=annotations)

    def relabel_labels(self, labels: Mapping[str, str]) -> dict[str, str]:
        """Apply the relabel rules, or return a copy when relabeling is off."""
        if self._relabel_config is None:
            return dict(labels)
        try:
            return dict(self._relabeler(labels, self._relabel_config))
        except Exception as e:
            raise RelabelError(f"relabel failed: {e}") from e

    async def post(
        self,
        event: Event,
        timeout: Any = DEFAULT,
        deadline: float | None = None,
    ) -> Alert | None:
        """Build an alert from event and deliver it to every endpoint.

        timeout bounds each endpoint attempt; DEFAULT uses the notifier's
        timeout and None disables it. deadline bounds the whole call in
        seconds: the attempt in flight when it expires and every endpoint
        not yet tried are recorded as timed out.

        Returns the delivered alert, or None when the event was skipped.
        Raises PostMessageError holding one DeliveryError per failed
        endpoint, in endpoint order, after every endpoint has been handled.
        """
        alert = self.build_alert(event)
        if alert is None:
            logger.debug(f"Skipping commit status update event for {event.involved_object.name}")
            return None

        if self.perform_relabel:
            alert = alert.model_copy(update={"labels": self.relabel_labels(alert.labels)})

        payload = alerts_payload([alert])
        if timeout is DEFAULT:
            timeout = self._timeout

        loop = asyncio.get_running_loop()
        expires_at = loop.time() + deadline if deadline is not None else None

        errors: list[DeliveryError] = []
        for url in self._endpoints:
            remaining = None
            if expires_at is not None:
                remaining = expires_at - loop.time()
                if remaining <= 0:
                    logger.error(f"Deadline exceeded before posting alert {alert.name} to {url}")
                    cause = TimeoutError(f"deadline of {deadline}s exceeded before attempt")
                    errors.append(DeliveryError(url, cause))
                    continue

            attempt = self._post_message(
                url,
                payload,
                proxy_url=self._proxy_url,
                cert_pool=self._cert_pool,
                timeout=timeout,
            )
            try:
                if remaining is None:
                    await attempt
                else:
                    await asyncio.wait_for(attempt, remaining)
            except Exception as e:
                cause = e
                if remaining is not None and isinstance(e, asyncio.TimeoutError):
                    cause = TimeoutError(f"deadline of {deadline}s exceeded")
                logger.error(f"Failed to post alert {alert.name} to {url}: {cause}")
                errors.append(DeliveryError(url, cause))
            else:
                logger.info(f"Alert {alert.name} sent to {url}")

        if errors:
            raise PostMessageError(errors)

        return alert
