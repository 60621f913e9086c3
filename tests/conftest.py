import pytest

from what2watch import create_app
from what2watch.db import get_db
from what2watch.models import ensure_user
from what2watch.tmdb import TMDbClient, TMDbError


class FakeTMDb:
    """In-memory stand-in for the TMDb HTTP client."""

    normalize = staticmethod(TMDbClient.normalize)

    def __init__(self):
        self.movies = {550: {"id": 550, "title": "Fight Club", "poster_path": "/fc.jpg"}}
        self.shows = {1396: {"id": 1396, "name": "Breaking Bad", "poster_path": "/bb.jpg"}}
        self.people = {287: {"id": 287, "name": "Brad Pitt", "profile_path": "/bp.jpg"}}
        self.search_calls = []

    def details(self, media_type, tmdb_id):
        table = self.movies if media_type == "movie" else self.shows
        if tmdb_id not in table:
            raise TMDbError("not found", status_code=404)
        return dict(table[tmdb_id])

    def person_details(self, person_id):
        if person_id not in self.people:
            raise TMDbError("not found", status_code=404)
        return dict(self.people[person_id])

    def search_multi(self, query, page=1):
        self.search_calls.append((query, page))
        if not query:
            return {"page": 1, "results": [], "total_pages": 1, "total_results": 0}
        return {
            "page": page,
            "total_pages": 20,
            "total_results": 400,
            "results": [
                {"id": 550, "media_type": "movie", "title": "Fight Club"},
                {"id": 287, "media_type": "person", "name": "Brad Pitt"},
            ],
        }


@pytest.fixture
def tmdb():
    return FakeTMDb()


@pytest.fixture
def app(tmp_path, tmdb):
    app = create_app({
        "DATABASE_PATH": str(tmp_path / "what2watch-test.db"),
        "TMDB_CLIENT": tmdb,
        "TESTING": True,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(app, email):
    with app.app_context():
        user_id = ensure_user(get_db(), email)
    return {"Authorization": f"Bearer {user_id}:{email}"}


@pytest.fixture
def alice(app):
    return _make_user(app, "alice@example.com")


@pytest.fixture
def bob(app):
    return _make_user(app, "bob@example.com")
