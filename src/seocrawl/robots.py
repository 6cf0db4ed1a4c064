"""robots.txt loading and URL permission checks."""

import logging
from typing import Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from seocrawl.constants import ROBOTS_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class RobotsPolicy:
    """
    Crawl permissions for one origin.

    A policy without parsed rules allows every URL, which is what a
    missing or unreadable robots.txt means.
    """

    def __init__(
        self,
        robots_url: Optional[str] = None,
        parser: Optional[RobotFileParser] = None,
        user_agent: Optional[str] = None,
    ):
        self.robots_url = robots_url
        self._parser = parser
        self.user_agent = user_agent or "*"

    @classmethod
    def allow_all(cls) -> "RobotsPolicy":
        return cls()

    @classmethod
    def from_text(
        cls,
        content: str,
        robots_url: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "RobotsPolicy":
        """Build a policy from the body of a robots.txt file."""
        parser = RobotFileParser()
        if robots_url:
            parser.set_url(robots_url)
        parser.parse(content.splitlines())
        return cls(robots_url=robots_url, parser=parser, user_agent=user_agent)

    @property
    def has_rules(self) -> bool:
        return self._parser is not None

    def allows(self, url: str) -> bool:
        """Whether robots.txt permits crawling a URL."""
        if self._parser is None:
            return True
        return self._parser.can_fetch(self.user_agent, url)


async def load_robots_policy(
    start_url: str,
    user_agent: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> RobotsPolicy:
    """
    Load and parse robots.txt for the origin of a URL.

    Anything other than a 200 response, and any HTTP failure, yields a
    policy that allows everything.

    Args:
        start_url: URL whose origin is checked
        user_agent: User agent matched against robots.txt groups
        client: Optional httpx client (one is created if omitted)

    Returns:
        RobotsPolicy for the origin
    """
    parsed = urlparse(start_url)
    robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

    headers = {"Accept": "text/plain,text/html,*/*"}
    if user_agent:
        headers["User-Agent"] = user_agent

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=ROBOTS_TIMEOUT_SECONDS, follow_redirects=True)

    try:
        response = await client.get(robots_url, headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"Could not load robots.txt: {e}")
        return RobotsPolicy.allow_all()
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code != 200:
        logger.info(f"No robots.txt found at {robots_url} (status: {response.status_code})")
        return RobotsPolicy.allow_all()

    policy = RobotsPolicy.from_text(response.text, robots_url=robots_url, user_agent=user_agent)
    logger.info(f"Loaded robots.txt from {robots_url}")
    if not policy.allows(start_url):
        logger.warning(f"robots.txt may block crawling of {start_url}")
    return policy
