from __future__ import annotations

import logging
from typing import Any, Dict

import requests


TMDB_BASE = "https://api.themoviedb.org/3"
IMAGE_BASE_URL = "https://image.tmdb.org/t/p"

logger = logging.getLogger("what2watch.tmdb")


class TMDbError(RuntimeError):
    """A TMDb request failed; ``status_code`` is the upstream status when known."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def image_url(path: str | None, size: str = "w342") -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{IMAGE_BASE_URL}/{size}{path}"


class TMDbClient:
    def __init__(self, api_key: str | None, timeout: int = 20, session: requests.Session | None = None):
        if not api_key:
            raise RuntimeError("TMDB_API_KEY is required. Put it in your environment or .env file.")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        params = {**(params or {}), "api_key": self.api_key}
        url = f"{TMDB_BASE}{path}"
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(f"TMDb request {path} failed: {exc}")
            raise TMDbError(f"TMDb request failed: {exc}") from exc
        if r.status_code >= 400:
            logger.warning(f"TMDb request {path} returned {r.status_code}")
            raise TMDbError(f"TMDb returned {r.status_code} for {path}", status_code=r.status_code)
        return r.json()

    # ----- public helpers -----
    def movie_details(self, movie_id: int) -> Dict[str, Any]:
        return self._get(f"/movie/{movie_id}")

    def tv_details(self, tv_id: int) -> Dict[str, Any]:
        return self._get(f"/tv/{tv_id}")

    def details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        if media_type == "movie":
            return self.movie_details(tmdb_id)
        if media_type == "tv":
            return self.tv_details(tmdb_id)
        raise ValueError(f"unsupported media type: {media_type!r}")

    def person_details(self, person_id: int) -> Dict[str, Any]:
        return self._get(f"/person/{person_id}")

    def search_multi(self, query: str, page: int = 1) -> Dict[str, Any]:
        if not query:
            return {"page": 1, "results": [], "total_pages": 1, "total_results": 0}
        return self._get("/search/multi", {"query": query, "page": page, "include_adult": False})

    @staticmethod
    def normalize(item: Dict[str, Any]) -> Dict[str, Any]:
        media_type = item.get("media_type") or ("movie" if "title" in item else "tv")
        title = item.get("title") or item.get("name") or "Untitled"
        release = item.get("release_date") or item.get("first_air_date") or None
        return {
            "tmdb_id": item.get("id"),
            "media_type": media_type,
            "title": title,
            "overview": item.get("overview") or "",
            "poster_path": item.get("poster_path"),
            "poster_url": image_url(item.get("poster_path")),
            "backdrop_path": item.get("backdrop_path"),
            "vote_average": float(item.get("vote_average") or 0.0),
            "vote_count": int(item.get("vote_count") or 0),
            "popularity": float(item.get("popularity") or 0.0),
            "release_date": release,
            "original_language": item.get("original_language"),
        }
