"""
Integration tests for the Sources API endpoints.

Remote playlists are served by respx through an injected fetch pipeline
with no relays.
"""
import httpx
import pytest
import respx

from fetch_pipeline import FetchPipeline, set_fetcher
from tests.fixtures.factories import create_channel, create_source

PLAYLIST_URL = "http://lists.example.com/tamil.m3u"

PLAYLIST = """#EXTM3U
#EXTINF:-1 group-title="Tamil",Sun TV HD
http://streams.example.com/sun/index.m3u8
#EXTINF:-1 group-title="Tamil",Zee Tamil
http://streams.example.com/zeet/index.m3u8
#EXTINF:-1 group-title="Marathi",Zee Marathi
http://streams.example.com/zeem/index.m3u8
"""


@pytest.fixture
def direct_fetcher():
    fetcher = FetchPipeline(client=httpx.AsyncClient(), relays=[], default_timeout_ms=1000)
    set_fetcher(fetcher)
    return fetcher


class TestListSources:
    """Tests for GET /api/sources."""

    @pytest.mark.asyncio
    async def test_empty(self, async_client):
        response = await async_client.get("/api/sources")
        assert response.status_code == 200
        assert response.json() == {"sources": []}

    @pytest.mark.asyncio
    async def test_lists_existing(self, async_client, sample_source):
        response = await async_client.get("/api/sources")
        sources = response.json()["sources"]
        assert [s["name"] for s in sources] == ["Sample Source"]


class TestCreateSource:
    """Tests for POST /api/sources."""

    @pytest.mark.asyncio
    async def test_text_source(self, async_client):
        response = await async_client.post(
            "/api/sources", json={"name": "Pasted", "origin": "text", "content": PLAYLIST}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["channel_count"] == 3

        channels = (await async_client.get("/api/channels")).json()
        assert channels["total"] == 3

    @pytest.mark.asyncio
    async def test_url_source(self, async_client, direct_fetcher):
        with respx.mock:
            respx.get(PLAYLIST_URL).mock(return_value=httpx.Response(200, text=PLAYLIST))
            response = await async_client.post(
                "/api/sources", json={"name": "Remote", "origin": "url", "url": PLAYLIST_URL}
            )

        assert response.status_code == 200
        assert response.json()["channel_count"] == 3

    @pytest.mark.asyncio
    async def test_unreachable_url_returns_502_and_keeps_errored_source(self, async_client, direct_fetcher):
        with respx.mock:
            respx.get(PLAYLIST_URL).mock(side_effect=httpx.ConnectError("refused"))
            response = await async_client.post(
                "/api/sources", json={"name": "Remote", "origin": "url", "url": PLAYLIST_URL}
            )

        assert response.status_code == 502
        source_id = response.json()["detail"]["source_id"]
        sources = (await async_client.get("/api/sources")).json()["sources"]
        assert sources[0]["id"] == source_id
        assert sources[0]["status"] == "error"

    @pytest.mark.asyncio
    async def test_unparseable_content_returns_400(self, async_client):
        response = await async_client.post(
            "/api/sources", json={"name": "Junk", "origin": "text", "content": "nothing here"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_origin_returns_400(self, async_client):
        response = await async_client.post("/api/sources", json={"name": "x", "origin": "ftp"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_built_in_model_filters_and_groups(self, async_client):
        response = await async_client.post(
            "/api/sources",
            json={"name": "Tamil only", "origin": "text", "content": PLAYLIST, "model_id": "builtin_tamil"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["channel_count"] == 2
        assert data["raw_channel_count"] == 3
        assert data["selection_group"] == "Tamil"

    @pytest.mark.asyncio
    async def test_unknown_model_returns_404(self, async_client):
        response = await async_client.post(
            "/api/sources",
            json={"name": "x", "origin": "text", "content": PLAYLIST, "model_id": "nope"},
        )
        assert response.status_code == 404


class TestSelectionModels:
    @pytest.mark.asyncio
    async def test_list_models(self, async_client):
        response = await async_client.get("/api/sources/selection-models")
        ids = [m["id"] for m in response.json()["models"]]
        assert ids == ["builtin_tamil", "builtin_sports", "builtin_news"]

    @pytest.mark.asyncio
    async def test_preview(self, async_client, sample_source):
        response = await async_client.post(
            "/api/sources/selection-models/preview", json={"patterns": ["Sun TV", "BBC"]}
        )
        data = response.json()
        assert data["total_channels"] == 2
        assert [p["match_count"] for p in data["patterns"]] == [1, 0]


class TestSourceLifecycle:
    """Refresh, toggle and delete."""

    @pytest.mark.asyncio
    async def test_refresh_text_source(self, async_client, test_session):
        source = create_source(test_session, content=PLAYLIST)
        response = await async_client.post(f"/api/sources/{source.id}/refresh")
        assert response.status_code == 200
        assert response.json()["channel_count"] == 3

    @pytest.mark.asyncio
    async def test_refresh_unknown_returns_404(self, async_client):
        response = await async_client.post("/api/sources/src_missing/refresh")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_disable_source(self, async_client, sample_source):
        response = await async_client.patch(f"/api/sources/{sample_source.id}", json={"enabled": False})
        assert response.status_code == 200
        assert response.json()["enabled"] is False

    @pytest.mark.asyncio
    async def test_delete_source(self, async_client, test_session, sample_source):
        other = create_source(test_session, name="Other")
        create_channel(test_session, source_id=other.id, name="BBC")

        response = await async_client.delete(f"/api/sources/{sample_source.id}")
        assert response.json() == {"status": "deleted", "channels_removed": 2}

        channels = (await async_client.get("/api/channels")).json()["channels"]
        assert [c["name"] for c in channels] == ["BBC"]

    @pytest.mark.asyncio
    async def test_delete_unknown_returns_404(self, async_client):
        response = await async_client.delete("/api/sources/src_missing")
        assert response.status_code == 404
