"""
Tests for the Alertmanager notifier.

Covers construction, alert building, relabeling and delivery fan-out.
"""

import asyncio
import ssl
from datetime import datetime, timezone
from functools import partial

import httpx
import pytest

from fluxalert.errors import (
    DeliveryError,
    InvalidEndpointsError,
    PostMessageError,
    RelabelConfigError,
    RelabelError,
)
from fluxalert.models.event import Event, ObjectReference
from fluxalert.notifiers.alertmanager import (
    AlertmanagerNotifier,
    title_case,
    title_case_preserve,
)
from fluxalert.transport import post_message

TIMESTAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class RecordingPoster:
    """Fake transport recording each call and failing for selected URLs."""

    def __init__(self, fail_on=(), delays=None):
        self.fail_on = set(fail_on)
        self.delays = delays or {}
        self.calls = []

    async def __call__(self, url, payload, proxy_url=None, cert_pool=None, timeout=None):
        self.calls.append(
            {
                "url": url,
                "payload": payload,
                "proxy_url": proxy_url,
                "cert_pool": cert_pool,
                "timeout": timeout,
            }
        )
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url in self.fail_on:
            raise ConnectionError(f"connection refused by {url}")

    @property
    def urls(self):
        return [call["url"] for call in self.calls]


def make_event(**overrides) -> Event:
    fields = dict(
        involved_object=ObjectReference(kind="Kustomization", name="app", namespace="flux-system"),
        severity="error",
        timestamp=TIMESTAMP,
        message="build failed",
        reason="build error",
        reporting_controller="kustomize-controller",
    )
    fields.update(overrides)
    return Event(**fields)


class TestTitleCase:
    def test_words_are_capitalized_and_joined(self):
        assert title_case("build error") == "BuildError"
        assert title_case("build failed") == "BuildFailed"

    def test_rest_of_word_is_lowercased(self):
        assert title_case("HEALTH check") == "HealthCheck"

    def test_empty_reason(self):
        assert title_case("") == ""

    def test_preserve_case_variant(self):
        assert title_case_preserve("HealthCheckFailed") == "HealthCheckFailed"
        assert title_case_preserve("build error") == "BuildError"


class TestConstruction:
    def test_endpoints_are_parsed_once(self):
        notifier = AlertmanagerNotifier("http://a:9093,http://b:9093")
        assert notifier.endpoints == ("http://a:9093", "http://b:9093")
        assert notifier.perform_relabel is False
        assert notifier.relabel_config is None

    def test_invalid_endpoint_fails_construction(self):
        with pytest.raises(InvalidEndpointsError) as exc_info:
            AlertmanagerNotifier("http://a,not-a-url,http://b")
        assert "not-a-url" in str(exc_info.value)

    def test_relabel_config_enables_relabeling(self):
        notifier = AlertmanagerNotifier("http://a", relabel_config="action: labeldrop\nregex: timestamp\n")
        assert notifier.perform_relabel is True
        assert len(notifier.relabel_config) == 1

    def test_unknown_relabel_field_fails_construction(self):
        with pytest.raises(RelabelConfigError):
            AlertmanagerNotifier("http://a", relabel_config="action: labeldrop\nbogus: 1\n")

    def test_proxy_is_kept(self):
        notifier = AlertmanagerNotifier("http://a", proxy_url="http://proxy:3128")
        assert notifier.proxy_url == "http://proxy:3128"


class TestBuildAlert:
    def test_end_to_end_labels_and_annotations(self):
        alert = AlertmanagerNotifier("http://a").build_alert(make_event())

        assert alert is not None
        assert alert.status == "firing"
        assert alert.annotations == {"message": "build failed"}
        assert alert.labels == {
            "alertname": "FluxKustomizationBuildError",
            "severity": "error",
            "reason": "build error",
            "timestamp": str(TIMESTAMP),
            "kind": "Kustomization",
            "name": "app",
            "namespace": "flux-system",
            "reportingcontroller": "kustomize-controller",
        }

    def test_commit_status_update_is_skipped(self):
        event = make_event(metadata={"commit_status": "update"})
        assert AlertmanagerNotifier("http://a").build_alert(event) is None

    def test_other_commit_status_is_not_skipped(self):
        event = make_event(metadata={"commit_status": "failure"})
        alert = AlertmanagerNotifier("http://a").build_alert(event)
        assert alert is not None
        assert alert.labels["commit_status"] == "failure"

    def test_summary_moves_to_annotations(self):
        event = make_event(metadata={"summary": "prod cluster", "revision": "main@sha1:abc"})
        alert = AlertmanagerNotifier("http://a").build_alert(event)

        assert alert.annotations == {"message": "build failed", "summary": "prod cluster"}
        assert "summary" not in alert.labels
        assert alert.labels["revision"] == "main@sha1:abc"

    def test_event_metadata_is_not_mutated(self):
        metadata = {"summary": "prod cluster", "revision": "r1"}
        event = make_event(metadata=metadata)
        AlertmanagerNotifier("http://a").build_alert(event)

        assert event.metadata == {"summary": "prod cluster", "revision": "r1"}

    def test_synthesized_labels_override_metadata(self):
        event = make_event(metadata={"severity": "bogus", "kind": "Other", "team": "platform"})
        alert = AlertmanagerNotifier("http://a").build_alert(event)

        assert alert.labels["severity"] == "error"
        assert alert.labels["kind"] == "Kustomization"
        assert alert.labels["team"] == "platform"

    def test_custom_title_caser(self):
        notifier = AlertmanagerNotifier("http://a", title_caser=title_case_preserve)
        alert = notifier.build_alert(make_event(reason="ReconciliationFailed"))
        assert alert.labels["alertname"] == "FluxKustomizationReconciliationFailed"


class TestPost:
    @pytest.mark.asyncio
    async def test_posts_single_alert_array_to_every_endpoint(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier(
            "http://a,http://b,http://c", proxy_url="http://proxy", post_message=poster
        )

        alert = await notifier.post(make_event())

        assert alert.name == "FluxKustomizationBuildError"
        assert poster.urls == ["http://a", "http://b", "http://c"]
        payload = poster.calls[0]["payload"]
        assert payload == [
            {
                "status": "firing",
                "labels": alert.labels,
                "annotations": {"message": "build failed"},
            }
        ]
        assert all(call["proxy_url"] == "http://proxy" for call in poster.calls)

    @pytest.mark.asyncio
    async def test_skipped_event_is_never_delivered(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a,http://b", post_message=poster)

        result = await notifier.post(make_event(metadata={"commit_status": "update"}))

        assert result is None
        assert poster.calls == []

    @pytest.mark.asyncio
    async def test_failures_are_aggregated_and_siblings_still_tried(self):
        poster = RecordingPoster(fail_on={"http://a", "http://c"})
        notifier = AlertmanagerNotifier("http://a,http://b,http://c,http://d", post_message=poster)

        with pytest.raises(PostMessageError) as exc_info:
            await notifier.post(make_event())

        err = exc_info.value
        assert poster.urls == ["http://a", "http://b", "http://c", "http://d"]
        assert err.urls == ["http://a", "http://c"]
        assert len(err) == 2
        assert all(isinstance(e, DeliveryError) for e in err.errors)
        assert str(err) == (
            "postMessage failed: http://a: connection refused by http://a; "
            "http://c: connection refused by http://c"
        )

    @pytest.mark.asyncio
    async def test_timeout_is_passed_to_transport(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a", post_message=poster, timeout=3.0)

        await notifier.post(make_event())
        await notifier.post(make_event(), timeout=0.5)

        assert [call["timeout"] for call in poster.calls] == [3.0, 0.5]

    @pytest.mark.asyncio
    async def test_relabeling_rewrites_labels(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier(
            "http://a",
            relabel_config=(
                "- action: labeldrop\n  regex: timestamp\n"
                "- source_labels: [namespace]\n  target_label: tenant\n"
            ),
            post_message=poster,
        )

        alert = await notifier.post(make_event())

        assert "timestamp" not in alert.labels
        assert alert.labels["tenant"] == "flux-system"
        assert alert.labels["alertname"] == "FluxKustomizationBuildError"
        assert poster.calls[0]["payload"][0]["labels"] == alert.labels

    @pytest.mark.asyncio
    async def test_relabeling_disabled_keeps_base_labels(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a", post_message=poster)
        event = make_event(metadata={"team": "platform"})

        alert = await notifier.post(event)

        assert alert.labels == notifier.build_alert(event).labels

    @pytest.mark.asyncio
    async def test_custom_relabeler_is_used(self):
        poster = RecordingPoster()
        seen = []

        def relabeler(labels, rules):
            seen.append(rules)
            return {"alertname": labels["alertname"], "cluster": "prod"}

        notifier = AlertmanagerNotifier(
            "http://a",
            relabel_config="action: labeldrop\nregex: foo\n",
            relabeler=relabeler,
            post_message=poster,
        )

        alert = await notifier.post(make_event())

        assert alert.labels == {"alertname": "FluxKustomizationBuildError", "cluster": "prod"}
        assert seen == [notifier.relabel_config]

    @pytest.mark.asyncio
    async def test_relabeler_failure_is_wrapped(self):
        poster = RecordingPoster()

        def relabeler(labels, rules):
            raise ValueError("boom")

        notifier = AlertmanagerNotifier(
            "http://a",
            relabel_config="action: labeldrop\nregex: foo\n",
            relabeler=relabeler,
            post_message=poster,
        )

        with pytest.raises(RelabelError) as exc_info:
            await notifier.post(make_event())

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert poster.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_posts_share_notifier(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a,http://b", post_message=poster)

        results = await asyncio.gather(
            notifier.post(make_event(reason="build error")),
            notifier.post(make_event(reason="health check failed")),
        )

        assert [r.name for r in results] == [
            "FluxKustomizationBuildError",
            "FluxKustomizationHealthCheckFailed",
        ]
        assert len(poster.calls) == 4

    @pytest.mark.asyncio
    async def test_http_fan_out_with_mock_transport(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            if request.url.host == "down":
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200)

        notifier = AlertmanagerNotifier(
            "http://up/api/v2/alerts,http://down/api/v2/alerts,http://up2/api/v2/alerts",
            post_message=partial(post_message, transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(PostMessageError) as exc_info:
            await notifier.post(make_event())

        assert [r.url.host for r in received] == ["up", "down", "up2"]
        assert exc_info.value.urls == ["http://down/api/v2/alerts"]
        assert isinstance(exc_info.value.errors[0].cause, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_proxy_and_cert_pool_reach_every_call(self):
        poster = RecordingPoster()
        cert_pool = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        notifier = AlertmanagerNotifier(
            "http://a,http://b",
            proxy_url="http://proxy:3128",
            cert_pool=cert_pool,
            post_message=poster,
        )

        await notifier.post(make_event())

        assert len(poster.calls) == 2
        assert all(call["cert_pool"] is cert_pool for call in poster.calls)
        assert all(call["proxy_url"] == "http://proxy:3128" for call in poster.calls)

    @pytest.mark.asyncio
    async def test_none_timeout_disables_attempt_timeout(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a", post_message=poster, timeout=3.0)

        await notifier.post(make_event(), timeout=None)

        assert poster.calls[0]["timeout"] is None

    @pytest.mark.asyncio
    async def test_deadline_records_in_flight_and_remaining_endpoints(self):
        poster = RecordingPoster(fail_on={"http://a"}, delays={"http://b": 5})
        notifier = AlertmanagerNotifier("http://a,http://b,http://c", post_message=poster)

        with pytest.raises(PostMessageError) as exc_info:
            await notifier.post(make_event(), deadline=0.05)

        err = exc_info.value
        assert poster.urls == ["http://a", "http://b"]
        assert err.urls == ["http://a", "http://b", "http://c"]
        assert isinstance(err.errors[0].cause, ConnectionError)
        assert isinstance(err.errors[1].cause, TimeoutError)
        assert isinstance(err.errors[2].cause, TimeoutError)
        assert "deadline" in str(err.errors[1])
        assert "deadline" in str(err.errors[2])

    @pytest.mark.asyncio
    async def test_deadline_not_reached_delivers_normally(self):
        poster = RecordingPoster()
        notifier = AlertmanagerNotifier("http://a,http://b", post_message=poster)

        alert = await notifier.post(make_event(), deadline=5)

        assert alert is not None
        assert poster.urls == ["http://a", "http://b"]

    @pytest.mark.asyncio
    async def test_empty_error_message_renders_exception_type(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("", request=request)

        notifier = AlertmanagerNotifier(
            "http://a",
            post_message=partial(post_message, transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(PostMessageError) as exc_info:
            await notifier.post(make_event())

        assert str(exc_info.value) == "postMessage failed: http://a: ReadTimeout"
