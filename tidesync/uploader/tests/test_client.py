"""Tests for the Tidepool HTTP client against a mocked transport."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from tidesync.uploader.client import (
    INTEGRATION_BASE_URL,
    PRODUCTION_BASE_URL,
    SESSION_TOKEN_HEADER,
    TidepoolClient,
    base_url_for,
)
from tidesync.uploader.errors import ProtocolError, TransportFailure
from tidesync.uploader.session import Credential
from tidesync.uploader.tests.conftest import TEST_TOKEN, TEST_UPLOAD_ID, TEST_USER_ID


def _client(handler) -> TidepoolClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TidepoolClient(base_url=INTEGRATION_BASE_URL, http_client=http)


class TestBaseUrl:
    def test_dev_flag_selects_integration(self) -> None:
        assert base_url_for(True) == INTEGRATION_BASE_URL
        assert base_url_for(False) == PRODUCTION_BASE_URL


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_token_from_header_and_user_from_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                headers={SESSION_TOKEN_HEADER: TEST_TOKEN},
                json={"userid": TEST_USER_ID, "username": "alice"},
            )

        reply = await _client(handler).authenticate(Credential("alice", "pw"))

        assert reply.token == TEST_TOKEN
        assert reply.user_id == TEST_USER_ID
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/auth/login"
        expected = "Basic " + base64.b64encode(b"alice:pw").decode()
        assert request.headers["Authorization"] == expected

    @pytest.mark.asyncio
    async def test_missing_user_id_is_allowed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={SESSION_TOKEN_HEADER: TEST_TOKEN}, json={})

        reply = await _client(handler).authenticate(Credential("alice", "pw"))
        assert reply.user_id is None

    @pytest.mark.asyncio
    async def test_missing_token_is_protocol_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"userid": TEST_USER_ID})

        with pytest.raises(ProtocolError):
            await _client(handler).authenticate(Credential("alice", "pw"))

    @pytest.mark.asyncio
    async def test_http_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"code": 401})

        with pytest.raises(TransportFailure) as excinfo:
            await _client(handler).authenticate(Credential("alice", "bad"))
        assert excinfo.value.status_code == 401
        assert excinfo.value.operation == "Login"

    @pytest.mark.asyncio
    async def test_network_error_is_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportFailure) as excinfo:
            await _client(handler).authenticate(Credential("alice", "pw"))
        assert excinfo.value.status_code is None


class TestDatasets:
    @pytest.mark.asyncio
    async def test_list_open_datasets_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": "ds", "uploadId": "up"}])

        found = await _client(handler).list_open_datasets(
            TEST_TOKEN, TEST_USER_ID, "info.nightscout.androidaps", 1
        )

        assert [(d.dataset_id, d.resolved_upload_id) for d in found] == [("ds", "up")]
        request = seen[0]
        assert request.url.path == f"/v1/users/{TEST_USER_ID}/data_sets"
        assert request.url.params["client.name"] == "info.nightscout.androidaps"
        assert request.url.params["size"] == "1"
        assert request.headers[SESSION_TOKEN_HEADER] == TEST_TOKEN

    @pytest.mark.asyncio
    async def test_list_reply_must_be_a_list(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": []})

        with pytest.raises(ProtocolError):
            await _client(handler).list_open_datasets(TEST_TOKEN, TEST_USER_ID, "c", 1)

    @pytest.mark.asyncio
    async def test_create_dataset_reads_nested_ids(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"data": {"id": "ds-9", "uploadId": "up-9"}})

        reply = await _client(handler).create_dataset(TEST_TOKEN, TEST_USER_ID, {"type": "upload"})

        assert reply.dataset_id == "ds-9"
        assert reply.resolved_upload_id == "up-9"
        assert bodies == [{"type": "upload"}]

    @pytest.mark.asyncio
    async def test_delete_dataset_path(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        await _client(handler).delete_dataset(TEST_TOKEN, "ds-9")

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/v1/datasets/ds-9"


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_posts_raw_json_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": None})

        await _client(handler).upload_chunk(TEST_TOKEN, TEST_UPLOAD_ID, '[{"type":"cbg"}]')

        request = seen[0]
        assert request.url.path == f"/v1/datasets/{TEST_UPLOAD_ID}/data"
        assert request.headers["Content-Type"] == "application/json"
        assert request.content == b'[{"type":"cbg"}]'

    @pytest.mark.asyncio
    async def test_upload_accepts_empty_reply(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200)

        reply = await _client(handler).upload_chunk(TEST_TOKEN, TEST_UPLOAD_ID, "[]")
        assert reply.errors == []

    @pytest.mark.asyncio
    async def test_upload_server_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with pytest.raises(TransportFailure) as excinfo:
            await _client(handler).upload_chunk(TEST_TOKEN, TEST_UPLOAD_ID, "[]")
        assert excinfo.value.operation == "Data Upload"
