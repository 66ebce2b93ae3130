"""Tests for the remote document store client."""

import json
from datetime import date

import httpx
import pytest

from subtrackr.clients.remote import RemoteStoreClient
from subtrackr.exceptions import RemoteStoreError, SyncUnavailableError
from subtrackr.models import MonthlyCycle, SubscriptionRecord, SyncEnvelope, Version
from subtrackr.money import Money
from subtrackr.sync.engine import SyncEngine


def make_envelope(record_id: str, name: str) -> SyncEnvelope:
    record = SubscriptionRecord(
        id=record_id,
        name=name,
        cost=Money.of("9.99", "USD"),
        billing_cycle=MonthlyCycle(day_of_month=15),
        anchor_date=date(2025, 1, 15),
        versions={"profile": Version(clock=1, origin="device-z")},
    )
    return SyncEnvelope.for_record(record)


def make_client(handler) -> RemoteStoreClient:
    return RemoteStoreClient(
        base_url="https://remote.test/v1",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


class TestPull:
    """Fetching remote changes."""

    def test_follows_pages(self):
        """Every page is fetched and the last cursor is returned."""
        requests = []
        pages = {
            None: {
                "documents": [make_envelope("a", "One").model_dump(mode="json")],
                "cursor": "5",
                "next_page_token": "p2",
            },
            "p2": {
                "documents": [make_envelope("b", "Two").model_dump(mode="json")],
                "cursor": "6",
            },
        }

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params.get("page_token")])

        with make_client(handler) as client:
            result = client.pull("3")

        assert [env.record.name for env in result.envelopes] == ["One", "Two"]
        assert result.cursor == "6"
        assert requests[0].url.path == "/v1/collections/subscriptions/documents"
        assert requests[0].url.params["since"] == "3"
        assert requests[0].headers["Authorization"] == "Bearer secret"

    def test_first_pull_has_no_since(self):
        """A device that never synced pulls everything."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"documents": [], "cursor": "0"})

        with make_client(handler) as client:
            result = client.pull(None)

        assert "since" not in seen[0].url.params
        assert result.envelopes == []
        assert result.cursor == "0"


class TestPush:
    """Writing local changes."""

    def test_batch_write(self):
        """Envelopes are posted in one batch."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path.endswith("/documents:batchWrite")
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"cursor_before": "6", "cursor_after": "8"})

        with make_client(handler) as client:
            result = client.push([make_envelope("a", "One"), make_envelope("b", "Two")])

        assert (result.cursor_before, result.cursor_after) == ("6", "8")
        documents = bodies[0]["documents"]
        assert [doc["record"]["id"] for doc in documents] == ["a", "b"]
        assert documents[0]["record"]["cost"] == {"amount": "9.99", "currency": "USD"}
        assert documents[0]["deleted"] is False


class TestErrors:
    """Mapping HTTP failures."""

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, status):
        """Server-side and throttling errors mean try again later."""
        with make_client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(SyncUnavailableError):
                client.pull(None)

    def test_rejected_request(self):
        """Client errors are reported with their status."""
        with make_client(lambda request: httpx.Response(403, text="forbidden")) as client:
            with pytest.raises(RemoteStoreError) as exc_info:
                client.push([make_envelope("a", "One")])

        assert exc_info.value.status_code == 403

    def test_non_json_body(self):
        """An HTML error page behind a 200 is reported as a store error."""
        with make_client(
            lambda request: httpx.Response(200, text="<html>maintenance</html>")
        ) as client:
            with pytest.raises(RemoteStoreError) as exc_info:
                client.pull(None)

        assert exc_info.value.status_code == 200

    def test_malformed_document(self):
        """A document that is not an envelope is reported as a store error."""
        body = {"documents": [{"bogus": 1}], "cursor": "1"}
        with make_client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(RemoteStoreError, match="malformed document"):
                client.pull(None)

    def test_malformed_push_cursor(self):
        """Cursors that are not strings are reported as a store error."""
        body = {"cursor_before": {"at": 1}, "cursor_after": "2"}
        with make_client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(RemoteStoreError):
                client.push([make_envelope("a", "One")])

    def test_network_failure(self):
        """Transport errors mean the remote is unreachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(SyncUnavailableError):
                client.pull("1")


class TestEngineOverHttp:
    """The engine driving the HTTP client."""

    def test_pull_apply_and_push(self, store):
        """Remote documents are applied and local changes pushed."""
        pushed = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json={
                        "documents": [make_envelope("a", "Remote").model_dump(mode="json")],
                        "cursor": "1",
                    },
                )
            pushed.extend(json.loads(request.content)["documents"])
            return httpx.Response(200, json={"cursor_before": "1", "cursor_after": "2"})

        store.create(
            name="Local",
            cost=Money.of("5", "USD"),
            billing_cycle=MonthlyCycle(day_of_month=1),
            anchor_date=date(2025, 1, 1),
        )

        with make_client(handler) as client:
            result = SyncEngine(store, client).sync()

        assert store.get("a").name == "Remote"
        assert [doc["record"]["name"] for doc in pushed] == ["Local"]
        assert result.cursor == "2"
        assert store.get_sync_cursor() == "2"
