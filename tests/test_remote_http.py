"""Tests for the HTTP remote event service."""

import json
import pytest
import httpx
from datetime import date

from honeybee.exceptions import (
    Forbidden,
    HoneybeeError,
    NetworkError,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from honeybee.models import Event, EventIdentity
from honeybee.remote import HttpEventService
from honeybee.session import StaticSession


def make_service(handler, **kwargs) -> HttpEventService:
    """Service whose HTTP client is served by ``handler``."""
    service = HttpEventService(
        "http://calendar.test/api/",
        StaticSession(user_id=1, token="secret", partner_id=2),
        retry_backoff=0,
        **kwargs,
    )
    service._client = httpx.AsyncClient(
        base_url=service.base_url,
        transport=httpx.MockTransport(handler),
    )
    return service


def event_record(remote_id=7, **overrides):
    record = {
        "id": remote_id,
        "title": "Dinner",
        "description": None,
        "date": "2024-01-01T00:00:00.000Z",
        "start_time": "19:00:00",
        "end_time": "20:00:00",
        "location": None,
        "created_by": 1,
        "created_by_name": "Alex",
    }
    record.update(overrides)
    return record


class TestHttpEventServiceRequests:
    """Tests for request shape and response decoding."""

    @pytest.mark.asyncio
    async def test_list_sends_bearer_token(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[event_record()])

        service = make_service(handler)
        events = await service.list()
        await service.close()

        assert requests[0].method == "GET"
        assert requests[0].url.path == "/api/events"
        assert requests[0].headers["Authorization"] == "Bearer secret"
        assert events[0].identity == EventIdentity.remote(7)
        assert events[0].date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_create_posts_fields(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json=event_record(remote_id=12))

        service = make_service(handler)
        event = await service.create({"title": "Dinner", "date": "2024-01-01"})

        assert bodies == [{"title": "Dinner", "date": "2024-01-01"}]
        assert event.remote_id == 12
        assert event.created_by_name == "Alex"

    @pytest.mark.asyncio
    async def test_update_uses_put(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json=event_record(remote_id=5, title="Lunch"))

        service = make_service(handler)
        event = await service.update(5, {"title": "Lunch"})

        assert seen == [("PUT", "/api/events/5")]
        assert event.title == "Lunch"

    @pytest.mark.asyncio
    async def test_delete_accepts_empty_body(self):
        def handler(request):
            assert request.method == "DELETE"
            return httpx.Response(204)

        service = make_service(handler)

        assert await service.delete(5) is None

    @pytest.mark.asyncio
    async def test_sync_batch_maps_accepted_ids(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={
                "syncedEvents": [
                    {"localId": 1, "remoteId": 101},
                    {"localId": 99, "remoteId": 199},
                ]
            })

        pending = [
            Event(identity=EventIdentity.local(1), title="a", date=date(2024, 1, 1), created_by=1),
            Event(identity=EventIdentity.local(2), title="b", date=date(2024, 1, 2), created_by=1),
        ]
        service = make_service(handler)

        accepted = await service.sync_batch(pending)

        assert accepted == {1: 101}
        submitted = bodies[0]["events"]
        assert [item["id"] for item in submitted] == [1, 2]
        assert submitted[0]["created_by"] == 1
        assert submitted[0]["date"] == "2024-01-01"


class TestHttpEventServiceErrors:
    """Tests for status mapping and retries."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error",
        [
            (400, ValidationError),
            (422, ValidationError),
            (401, Unauthorized),
            (403, Forbidden),
            (404, NotFoundError),
            (409, HoneybeeError),
        ],
    )
    async def test_status_mapping(self, status, error):
        service = make_service(lambda request: httpx.Response(status, json={"error": "nope"}))

        with pytest.raises(error, match="nope"):
            await service.delete(1)

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"error": "Event not found"})

        service = make_service(handler, max_retries=3)

        with pytest.raises(NotFoundError):
            await service.delete(1)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried_then_network_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        service = make_service(handler, max_retries=2)

        with pytest.raises(NetworkError):
            await service.list()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_connection_error_becomes_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = make_service(handler, max_retries=0)

        with pytest.raises(NetworkError, match="connection failed"):
            await service.list()

    @pytest.mark.asyncio
    async def test_timeout_becomes_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        service = make_service(handler, max_retries=0)

        with pytest.raises(NetworkError, match="timeout"):
            await service.list()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json=[])])
        service = make_service(lambda request: next(responses), max_retries=1)

        assert await service.list() == []

    @pytest.mark.asyncio
    async def test_signed_out_session_raises_unauthorized(self):
        service = HttpEventService(
            "http://calendar.test/api", StaticSession(user_id=None, token=None)
        )

        with pytest.raises(Unauthorized):
            await service.list()


class TestHttpEventServiceSingleDelivery:
    """Tests that creates are sent at most once."""

    @pytest.mark.asyncio
    async def test_create_not_resent_after_timeout(self):
        posts = []

        def handler(request):
            posts.append(request)
            # The server committed the row but the response never arrived
            raise httpx.ReadTimeout("response lost", request=request)

        service = make_service(handler, max_retries=3)

        with pytest.raises(NetworkError):
            await service.create({"title": "Dinner", "date": "2024-01-01"})
        assert len(posts) == 1

    @pytest.mark.asyncio
    async def test_sync_batch_not_resent_after_timeout(self):
        posts = []

        def handler(request):
            posts.append(request)
            raise httpx.ReadTimeout("response lost", request=request)

        pending = [
            Event(identity=EventIdentity.local(1), title="a", date=date(2024, 1, 1), created_by=1),
        ]
        service = make_service(handler, max_retries=3)

        with pytest.raises(NetworkError):
            await service.sync_batch(pending)
        assert len(posts) == 1

    @pytest.mark.asyncio
    async def test_create_not_resent_after_server_error(self):
        posts = []

        def handler(request):
            posts.append(request)
            return httpx.Response(502)

        service = make_service(handler, max_retries=3)

        with pytest.raises(NetworkError):
            await service.create({"title": "Dinner", "date": "2024-01-01"})
        assert len(posts) == 1

    @pytest.mark.asyncio
    async def test_idempotent_requests_still_retried(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(204)

        service = make_service(handler, max_retries=1)

        await service.delete(5)
        assert calls == ["DELETE", "DELETE"]


class TestHttpEventServiceMalformedResponses:
    """Tests for 2xx bodies that are not what the API promises."""

    @pytest.mark.asyncio
    async def test_non_json_body_is_network_error(self):
        service = make_service(
            lambda request: httpx.Response(200, text="<html>captive portal</html>")
        )

        with pytest.raises(NetworkError, match="Unreadable"):
            await service.list()

    @pytest.mark.asyncio
    async def test_list_expects_array(self):
        service = make_service(lambda request: httpx.Response(200, json={"events": []}))

        with pytest.raises(NetworkError):
            await service.list()

    @pytest.mark.asyncio
    async def test_list_items_must_be_objects(self):
        service = make_service(lambda request: httpx.Response(200, json=[1, 2]))

        with pytest.raises(NetworkError):
            await service.list()

    @pytest.mark.asyncio
    async def test_sync_expects_object(self):
        service = make_service(lambda request: httpx.Response(200, json=[{"localId": 1}]))
        pending = [
            Event(identity=EventIdentity.local(1), title="a", date=date(2024, 1, 1), created_by=1),
        ]

        with pytest.raises(NetworkError):
            await service.sync_batch(pending)

    @pytest.mark.asyncio
    async def test_sync_skips_malformed_entries(self):
        service = make_service(lambda request: httpx.Response(200, json={
            "syncedEvents": ["oops", {"localId": "x", "remoteId": 5}, {"localId": 1, "remoteId": 9}]
        }))
        pending = [
            Event(identity=EventIdentity.local(1), title="a", date=date(2024, 1, 1), created_by=1),
        ]

        assert await service.sync_batch(pending) == {1: 9}

    @pytest.mark.asyncio
    async def test_create_expects_object(self):
        service = make_service(lambda request: httpx.Response(201, json=["created"]))

        with pytest.raises(NetworkError):
            await service.create({"title": "Dinner", "date": "2024-01-01"})
