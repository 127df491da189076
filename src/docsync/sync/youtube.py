"""YouTube channel listing for video sources."""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass

import frontmatter
import httpx

from docsync.entities.results import FailureKind
from docsync.errors import SourceSyncError
from docsync.sync.github import classify_http_error

logger = logging.getLogger(__name__)

API_BASE_URL = "https://www.googleapis.com/youtube/v3"
PAGE_SIZE = 50


@dataclass(frozen=True)
class Video:
    """One video from a channel listing."""

    id: str
    title: str
    description: str
    published_at: str
    thumbnail_url: str = ""

    @property
    def url(self) -> str:
        return f"https://youtube.com/watch?v={self.id}"


def slugify(text: str, max_length: int = 50) -> str:
    """Lowercase ASCII slug, accents stripped, hyphen separated."""
    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def render_video(video: Video) -> str:
    """Markdown page for a video, with YAML front matter."""
    body = "\n".join(
        [
            f"# {video.title}",
            "",
            f"> Published on {video.published_at[:10]}",
            "",
            "## Description",
            "",
            video.description or "_No description._",
            "",
            "## Watch on YouTube",
            "",
            f"[Watch this video]({video.url})",
            "",
        ]
    )
    post = frontmatter.Post(
        body,
        title=video.title,
        description=" ".join(video.description.split())[:200],
        videoId=video.id,
        publishedAt=video.published_at,
        url=video.url,
    )
    return frontmatter.dumps(post) + "\n"


class YouTubeFetcher:
    """Lists a channel's newest videos through the YouTube Data API v3."""

    def __init__(
        self,
        api_key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        api_base_url: str = API_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._transport = transport
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout

    async def list_videos(self, channel_id: str, max_videos: int) -> list[Video]:
        """Newest-first videos of ``channel_id``, at most ``max_videos``.

        Raises:
            SourceSyncError: The API call failed.
        """
        videos: list[Video] = []
        page_token: str | None = None

        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            while len(videos) < max_videos:
                params: dict[str, str | int] = {
                    "part": "snippet",
                    "channelId": channel_id,
                    "maxResults": min(PAGE_SIZE, max_videos - len(videos)),
                    "order": "date",
                    "type": "video",
                    "key": self._api_key,
                }
                if page_token:
                    params["pageToken"] = page_token

                try:
                    response = await client.get(f"{self._api_base_url}/search", params=params)
                except httpx.TransportError as e:
                    raise SourceSyncError(
                        f"Network error listing videos for {channel_id}: {e}", FailureKind.NETWORK
                    ) from e

                if response.is_error:
                    raise SourceSyncError(
                        f"YouTube API error for {channel_id}: HTTP {response.status_code}",
                        classify_http_error(response),
                    )

                data = response.json()
                for item in data.get("items", []):
                    video_id = item.get("id", {}).get("videoId")
                    if not video_id:
                        continue
                    snippet = item.get("snippet", {})
                    videos.append(
                        Video(
                            id=video_id,
                            title=snippet.get("title") or "Untitled",
                            description=snippet.get("description") or "",
                            published_at=snippet.get("publishedAt") or "",
                            thumbnail_url=snippet.get("thumbnails", {}).get("high", {}).get("url", ""),
                        )
                    )

                page_token = data.get("nextPageToken")
                if not page_token:
                    break

        logger.debug("Listed %d videos for channel %s", len(videos), channel_id)
        return videos[:max_videos]
