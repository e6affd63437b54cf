"""Tests for the Jellyfin/Emby API clients."""

import json

import httpx
import pytest

from scroblarr.config import ServerConfig
from scroblarr.errors import ItemNotFoundError, ProviderError
from scroblarr.media_servers import MediaServer
from scroblarr.media_servers.jellyfin import CLIENT_NAME, EmbyServer, JellyfinServer, device_id
from scroblarr.models import ScrobbleAction
from scroblarr.request import ResilientClient

from .factories import make_episode, make_movie

SESSIONS = [
    {
        "Id": "sess-1",
        "UserId": "user-1",
        "UserName": "alice",
        "Client": "Jellyfin Web",
        "PlayState": {"PositionTicks": 27_000_000_000, "IsPaused": False},
        "NowPlayingItem": {
            "Id": "item-1",
            "Name": "Ozymandias",
            "Type": "Episode",
            "SeriesName": "Breaking Bad",
            "ParentIndexNumber": 5,
            "IndexNumber": 14,
            "RunTimeTicks": 36_000_000_000,
            "ProviderIds": {"Tvdb": "4639456"},
        },
    },
    {
        "Id": "sess-2",
        "UserId": "user-2",
        "UserName": "bob",
        "Client": "Infuse",
        "PlayState": {"PositionTicks": 10_000_000, "IsPaused": True},
        "NowPlayingItem": {
            "Id": "item-2",
            "Name": "Heat",
            "Type": "Movie",
            "ProductionYear": 1995,
            "RunTimeTicks": 100_000_000,
            "ProviderIds": {"Imdb": "tt0113277"},
        },
    },
    # Idle session, nothing playing
    {"Id": "sess-3", "UserId": "user-1", "Client": "Jellyfin Web"},
    # Session created by our own scrobbles
    {
        "Id": "sess-4",
        "Client": CLIENT_NAME,
        "NowPlayingItem": {"Id": "item-9", "Name": "Heat", "Type": "Movie"},
    },
]

USERS = [
    {"Id": "user-0", "Name": "disabled", "Policy": {"IsDisabled": True}},
    {"Id": "user-1", "Name": "alice", "Policy": {"IsDisabled": False}},
    {"Id": "user-2", "Name": "bob", "Policy": {}},
]


class FakeJellyfin:
    """Routes MockTransport requests and records them."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.items_by_provider: dict[str, list[dict]] = {}
        self.search_items: list[dict] = []
        self.fail_status: int | None = None
        self.sessions: object = SESSIONS

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status:
            return httpx.Response(self.fail_status, text="server error")

        path = request.url.path
        params = request.url.params
        if path == "/System/Info":
            return httpx.Response(200, json={"ServerName": "home", "Version": "10.9.0"})
        if path == "/System/Info/Public":
            return httpx.Response(200, json={"ServerName": "home"})
        if path == "/Users/AuthenticateByName":
            return httpx.Response(200, json={"AccessToken": "fresh-token"})
        if path == "/Sessions":
            return httpx.Response(200, content=json.dumps(self.sessions), headers={"Content-Type": "application/json"})
        if path == "/Users":
            return httpx.Response(200, json=USERS)
        if path == "/Items":
            if "AnyProviderIdEquals" in params:
                items = self.items_by_provider.get(params["AnyProviderIdEquals"], [])
                return httpx.Response(200, json={"Items": items})
            return httpx.Response(200, json={"Items": self.search_items})
        if path.startswith("/Sessions/Playing"):
            return httpx.Response(204)
        return httpx.Response(404)

    def posted(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST" and r.url.path == path]


@pytest.fixture
def fake():
    return FakeJellyfin()


@pytest.fixture
def http(fake):
    return ResilientClient(transport=httpx.MockTransport(fake), max_retries=0)


@pytest.fixture
def server_config():
    return ServerConfig(type="jellyfin", url="http://jellyfin:8096/", token="test-token")


@pytest.fixture
def client(server_config, http):
    return JellyfinServer("jellyfin", server_config, http)


class TestClientInitialization:
    """Test client initialization."""

    def test_base_url_strips_trailing_slash(self, client):
        assert client.base_url == "http://jellyfin:8096"
        assert client.name == "jellyfin"
        assert client.server_type == "jellyfin"

    def test_jellyfin_authorization_header(self, client):
        header = client.http.headers["Authorization"]
        assert header.startswith("MediaBrowser ")
        assert 'Token="test-token"' in header
        assert f'Client="{CLIENT_NAME}"' in header

    def test_emby_token_header(self, http):
        emby = EmbyServer("emby", ServerConfig(type="emby", url="http://emby:8096", token="emby-token"), http)
        assert emby.http.headers["X-Emby-Token"] == "emby-token"
        assert emby.server_type == "emby"

    @pytest.mark.asyncio
    async def test_emby_password_auth_sets_token_after_connect(self, fake, http):
        config = ServerConfig(type="emby", url="http://emby:8096", username="alice", password="secret")
        emby = EmbyServer("emby", config, http)
        assert "X-Emby-Token" not in emby.http.headers

        await emby.connect()
        assert "X-Emby-Token" not in fake.requests[0].headers
        assert emby.http.headers["X-Emby-Token"] == "fresh-token"
        assert fake.requests[-1].headers["X-Emby-Token"] == "fresh-token"

    def test_missing_url(self):
        with pytest.raises(ProviderError, match="URL"):
            JellyfinServer("jf", ServerConfig(type="jellyfin", token="t"))

    def test_missing_auth(self):
        with pytest.raises(ProviderError, match="authentication"):
            JellyfinServer("jf", ServerConfig(type="jellyfin", url="http://jf", username="alice"))

    def test_implements_media_server(self, client):
        assert isinstance(client, MediaServer)

    def test_device_id_is_stable(self):
        assert device_id("alice") == device_id("alice")
        assert device_id("alice") != device_id("bob")


class TestConnection:
    """Test connect, authentication and health checks."""

    @pytest.mark.asyncio
    async def test_connect_with_token(self, client, fake):
        await client.connect()
        assert [r.url.path for r in fake.requests] == ["/System/Info"]

    @pytest.mark.asyncio
    async def test_connect_authenticates_with_password(self, fake, http):
        config = ServerConfig(type="jellyfin", url="http://jf:8096", username="alice", password="secret")
        client = JellyfinServer("jf", config, http)
        await client.connect()

        assert fake.posted("/Users/AuthenticateByName") == [{"Username": "alice", "Pw": "secret"}]
        auth_request = fake.requests[0]
        assert "Token=" not in auth_request.headers["Authorization"]
        assert client.token == "fresh-token"
        assert 'Token="fresh-token"' in fake.requests[-1].headers["Authorization"]

    @pytest.mark.asyncio
    async def test_health_check(self, client, fake):
        assert await client.health_check() is True
        fake.fail_status = 500
        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_error_status_raises(self, client, fake):
        fake.fail_status = 401
        with pytest.raises(ProviderError, match="401"):
            await client.connect()

    @pytest.mark.asyncio
    async def test_network_error_raises(self, server_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        http = ResilientClient(transport=httpx.MockTransport(handler), max_retries=1, initial_backoff=0)
        client = JellyfinServer("jf", server_config, http)
        with pytest.raises(ProviderError, match="failed"):
            await client.connect()


class TestSessions:
    """Test session polling."""

    @pytest.mark.asyncio
    async def test_get_sessions(self, client):
        sessions = await client.get_sessions()
        assert len(sessions) == 2

        episode, movie = sessions
        assert episode.type == "episode"
        assert episode.show_title == "Breaking Bad"
        assert (episode.season_num, episode.episode_num) == (5, 14)
        assert episode.duration == 3_600_000
        assert episode.view_offset == 2_700_000
        assert episode.progress == 75.0
        assert episode.state == "playing"
        assert episode.tvdb_id == "4639456"
        assert episode.source == "jellyfin"
        assert episode.user.username == "alice"

        assert movie.type == "movie"
        assert movie.state == "paused"
        assert movie.year == 1995
        assert movie.imdb_id == "tt0113277"
        assert movie.progress == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_null_client_field(self, client, fake):
        session = dict(SESSIONS[1], Client=None)
        fake.sessions = [session]

        (movie,) = await client.get_sessions()
        assert movie.title == "Heat"

    @pytest.mark.asyncio
    async def test_null_body_is_empty(self, client, fake):
        fake.sessions = None
        assert await client.get_sessions() == []

    @pytest.mark.parametrize(
        "body",
        [
            {"Items": SESSIONS},
            ["not-a-session"],
            [dict(SESSIONS[1], NowPlayingItem="item-2")],
            [dict(SESSIONS[1], PlayState={"PositionTicks": "soon"})],
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_body_raises_provider_error(self, client, fake, body):
        fake.sessions = body
        with pytest.raises(ProviderError, match=r"\[jellyfin\]"):
            await client.get_sessions()


class TestScrobble:
    """Test scrobbling to the server."""

    @pytest.mark.asyncio
    async def test_start_by_imdb(self, client, fake):
        fake.items_by_provider["Imdb.tt1375666"] = [{"Id": "local-42"}]
        session = make_movie(progress=45.0, view_offset=45_000)

        await client.scrobble(session, ScrobbleAction.START)

        body = fake.posted("/Sessions/Playing/Progress")[0]
        assert body["ItemId"] == "local-42"
        assert body["UserId"] == "user-1"
        assert body["PositionTicks"] == 45_000 * 10_000
        assert body["IsPaused"] is False

    @pytest.mark.asyncio
    async def test_pause_and_stop_post_stopped(self, client, fake):
        fake.items_by_provider["Imdb.tt1375666"] = [{"Id": "local-42"}]
        await client.scrobble(make_movie(), ScrobbleAction.PAUSE)
        await client.scrobble(make_movie(), ScrobbleAction.STOP)

        bodies = fake.posted("/Sessions/Playing/Stopped")
        assert [b["IsPaused"] for b in bodies] == [True, False]

    @pytest.mark.asyncio
    async def test_no_item_found(self, client, fake):
        with pytest.raises(ItemNotFoundError):
            await client.scrobble(make_movie(), ScrobbleAction.START)
        assert fake.posted("/Sessions/Playing/Progress") == []

    @pytest.mark.asyncio
    async def test_episode_search_matches_season_and_number(self, client, fake):
        fake.search_items = [
            {"Id": "wrong", "ParentIndexNumber": 5, "IndexNumber": 13},
            {"Id": "right", "ParentIndexNumber": 5, "IndexNumber": 14},
        ]
        item_id = await client.find_item(make_episode(tvdb_id=None))
        assert item_id == "right"

        search = fake.requests[-1].url.params
        assert search["searchTerm"] == "Ozymandias"
        assert search["includeItemTypes"] == "Episode"

    @pytest.mark.asyncio
    async def test_movie_search_filters_by_year(self, client, fake):
        fake.search_items = [{"Id": "movie-1"}]
        assert await client.find_item(make_movie(imdb_id=None)) == "movie-1"
        assert fake.requests[-1].url.params["years"] == "2010"

    @pytest.mark.asyncio
    async def test_default_user_prefers_configured_username(self, fake, http):
        config = ServerConfig(type="jellyfin", url="http://jf", token="t", username="bob")
        client = JellyfinServer("jf", config, http)
        assert await client.get_default_user_id() == "user-2"

        # Cached after the first lookup
        await client.get_default_user_id()
        assert len([r for r in fake.requests if r.url.path == "/Users"]) == 1
