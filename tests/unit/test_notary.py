"""
Unit tests for the Notary trust repository client
"""

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from aiohttp import web

from fixtures.trust import TEST_DIGEST
from warden.config import NotaryConfig
from warden.exceptions import DeadlineExceeded, NoTrustData, RepoClientError
from warden.providers.notary import NotaryRepoClient, NotaryRepoFactory

GUN = "eu.gcr.io/kyma-project/function-controller"


def targets_metadata(**targets):
    return {
        "signed": {
            "_type": "Targets",
            "targets": {
                tag: {"hashes": hashes, "length": 1234} for tag, hashes in targets.items()
            },
        },
        "signatures": [],
    }


def encoded(digest: bytes) -> str:
    return base64.b64encode(digest).decode("ascii")


async def start_notary(http_server, roles):
    """Serve ``roles`` (role name -> metadata) and record requested roles."""
    requested = []

    async def metadata(request):
        role = request.match_info["role"]
        requested.append((request.match_info["gun"], role))
        if role not in roles:
            return web.json_response({"errors": [{"code": "METADATA_NOT_FOUND"}]}, status=404)
        body = roles[role]
        if isinstance(body, int):
            return web.Response(status=body)
        return web.json_response(body)

    server = await http_server([web.get("/v2/{gun:.+}/_trust/tuf/{role:.+}.json", metadata)])
    return str(server.make_url("")).rstrip("/"), requested


class TestNotaryRepoClient:
    """Test trust data lookups over HTTP."""

    @pytest.mark.asyncio
    async def test_target_from_releases_role(self, http_server):
        url, requested = await start_notary(
            http_server,
            {"targets/releases": targets_metadata(v1={"sha256": encoded(TEST_DIGEST)})},
        )
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        target = await client.get_target_by_name("v1")

        assert target.name == "v1"
        assert target.role == "targets/releases"
        assert target.hashes == {"sha256": TEST_DIGEST}
        assert target.length == 1234
        assert requested == [(GUN, "targets/releases")]

    @pytest.mark.asyncio
    async def test_falls_back_to_targets_role(self, http_server):
        url, requested = await start_notary(
            http_server,
            {"targets": targets_metadata(v1={"sha256": encoded(TEST_DIGEST)})},
        )
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        target = await client.get_target_by_name("v1")

        assert target.role == "targets"
        assert [role for _, role in requested] == ["targets/releases", "targets"]

    @pytest.mark.asyncio
    async def test_unknown_tag(self, http_server):
        url, _ = await start_notary(
            http_server,
            {
                "targets/releases": targets_metadata(v1={"sha256": encoded(TEST_DIGEST)}),
                "targets": targets_metadata(),
            },
        )
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        with pytest.raises(NoTrustData, match="No valid trust data for v2"):
            await client.get_target_by_name("v2")

    @pytest.mark.asyncio
    async def test_repository_without_trust_data(self, http_server):
        url, _ = await start_notary(http_server, {})
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        with pytest.raises(NoTrustData, match="does not have trust data"):
            await client.get_target_by_name("v1")

    @pytest.mark.asyncio
    async def test_server_error(self, http_server):
        url, _ = await start_notary(http_server, {"targets/releases": 500})
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        with pytest.raises(RepoClientError, match="status 500"):
            await client.get_target_by_name("v1")

    @pytest.mark.asyncio
    async def test_invalid_hash_encoding(self, http_server):
        url, _ = await start_notary(
            http_server, {"targets/releases": targets_metadata(v1={"sha256": "%%%not-base64"})}
        )
        client = NotaryRepoClient(url, GUN, timeout=2.0)

        with pytest.raises(RepoClientError, match="invalid sha256 hash encoding"):
            await client.get_target_by_name("v1")

    @pytest.mark.asyncio
    async def test_connection_error(self, mock_aiohttp_session):
        mock_session = mock_aiohttp_session(MagicMock())
        mock_session.get.side_effect = aiohttp.ClientConnectionError("connection refused")
        client = NotaryRepoClient("http://notary.test", GUN, timeout=2.0)

        with pytest.raises(RepoClientError, match="connection refused"):
            await client.get_target_by_name("v1")

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, mock_aiohttp_session):
        mock_response = MagicMock()
        mock_response.status = 200
        mock_response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        mock_aiohttp_session(mock_response)
        client = NotaryRepoClient("http://notary.test", GUN, timeout=2.0)

        with pytest.raises(RepoClientError, match="invalid targets/releases metadata"):
            await client.get_target_by_name("v1")

    @pytest.mark.asyncio
    async def test_timeout(self, mock_aiohttp_session):
        mock_response = MagicMock()
        mock_response.status = 200
        mock_response.json = AsyncMock(side_effect=asyncio.TimeoutError())
        mock_aiohttp_session(mock_response)
        client = NotaryRepoClient("http://notary.test", GUN, timeout=2.0)

        with pytest.raises(DeadlineExceeded):
            await client.get_target_by_name("v1")


class TestNotaryRepoFactory:
    """Test client construction."""

    def test_new_repo_client(self):
        client = NotaryRepoFactory().new_repo_client(
            GUN, NotaryConfig(url="https://signing.example.com/", timeout=3.0)
        )

        assert isinstance(client, NotaryRepoClient)
        assert client.url == "https://signing.example.com"
        assert client.gun == GUN
        assert client.timeout.total == 3.0

    def test_timeout_override(self):
        client = NotaryRepoFactory(timeout=0.5).new_repo_client(
            GUN, NotaryConfig(url="https://signing.example.com", timeout=3.0)
        )
        assert client.timeout.total == 0.5

    def test_empty_repository(self):
        with pytest.raises(RepoClientError):
            NotaryRepoFactory().new_repo_client("", NotaryConfig(url="https://signing.example.com"))

    @pytest.mark.parametrize("url", ["", "signing.example.com", "ftp://signing.example.com"])
    def test_invalid_url(self, url):
        with pytest.raises(RepoClientError, match="invalid notary url"):
            NotaryRepoFactory().new_repo_client(GUN, NotaryConfig(url=url))
