"""GIF search against the Tenor v2 API."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from .errors import GifSearchError
from .log import logger

TENOR_BASE_URL = "https://tenor.googleapis.com/v2"
_FORMAT_PREFERENCE = ("gif", "mediumgif", "tinygif")


@dataclass(frozen=True)
class Gif:
    id: str
    url: str


def _pick_url(result: dict) -> str | None:
    formats = result.get("media_formats") or {}
    for name in _FORMAT_PREFERENCE:
        url = (formats.get(name) or {}).get("url")
        if url:
            return url
    return None


async def search_gifs(
    query: str,
    key: str | None,
    *,
    limit: int = 12,
    client_key: str = "huddle",
    client: httpx.AsyncClient | None = None,
) -> list[Gif]:
    """Search Tenor, or list featured GIFs when ``query`` is blank."""
    if not key:
        raise GifSearchError("Tenor API key not configured (HUDDLE_TENOR_KEY).")

    query = query.strip()
    params = {"key": key, "client_key": client_key, "limit": limit, "media_filter": "gif"}
    if query:
        params["q"] = query
    endpoint = f"{TENOR_BASE_URL}/{'search' if query else 'featured'}"

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10.0)
    try:
        resp = await client.get(endpoint, params=params)
        resp.raise_for_status()
        payload = resp.json()
    except httpx.HTTPStatusError as exc:
        raise GifSearchError(f"Tenor fetch failed ({exc.response.status_code})") from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise GifSearchError(f"Failed to fetch GIFs: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()

    gifs = []
    for result in payload.get("results") or []:
        url = _pick_url(result)
        if url:
            gifs.append(Gif(id=str(result.get("id", "")), url=url))
    logger.debug("Tenor returned {} gifs for {!r}", len(gifs), query)
    if not gifs:
        raise GifSearchError("No GIFs found for that search.")
    return gifs
