"""
Delta feed walker for a single group.

Drains the paginated group delta feed from a stored delta link (or from a
fresh baseline) and returns every raw member entry together with the
terminal delta link that becomes the next resume cursor.
"""

import logging
from collections.abc import Iterator
from typing import Any

from guest_sync.api.graph_api import (
    DELTA_LINK_KEY,
    NEXT_LINK_KEY,
    GraphAPI,
    MalformedResponseError,
)

MEMBERS_DELTA_KEY = "members@delta"

# Guard against a feed that keeps handing out nextLinks forever
DEFAULT_MAX_PAGES = 10000

logger = logging.getLogger(__name__)


class DeltaFetcher:
    """
    Walks the group delta feed to completion.

    Usage:
        fetcher = DeltaFetcher(api)

        # Full baseline
        token, entries = fetcher.fetch(group_id, None)

        # Incremental run
        token, entries = fetcher.fetch(group_id, stored_token)
    """

    def __init__(self, api: GraphAPI, max_pages: int = DEFAULT_MAX_PAGES):
        self.api = api
        self.max_pages = max_pages

    def iter_pages(
        self, group_id: str, cursor: str | None
    ) -> Iterator[dict[str, Any]]:
        """
        Yield delta pages in order, ending with the page carrying the deltaLink.

        Raises:
            MalformedResponseError: If the walk exceeds max_pages
        """
        if cursor:
            url, params = cursor, None
            logger.debug(f"Resuming delta feed for group {group_id}")
        else:
            url, params = self.api.initial_delta_request(group_id)
            logger.debug(f"Starting baseline delta feed for group {group_id}")

        for page_number in range(1, self.max_pages + 1):
            page = self.api.get_delta_page(url, params)
            yield page

            next_link = page.get(NEXT_LINK_KEY)
            if not next_link:
                logger.debug(f"Delta feed drained after {page_number} page(s)")
                return

            url, params = next_link, None

        raise MalformedResponseError(
            f"Delta feed for group {group_id} exceeded {self.max_pages} pages"
        )

    def _member_entries(
        self, group_id: str, page: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Flatten the members@delta lists of the group objects on one page."""
        entries: list[dict[str, Any]] = []

        for group_object in page.get("value", []):
            if not isinstance(group_object, dict):
                raise MalformedResponseError(
                    f"Delta page entry is {type(group_object).__name__}, "
                    f"expected an object"
                )
            if group_object.get("id") != group_id:
                continue

            members = group_object.get(MEMBERS_DELTA_KEY, [])
            if not isinstance(members, list):
                raise MalformedResponseError(
                    f"'{MEMBERS_DELTA_KEY}' is {type(members).__name__}, "
                    f"expected a list"
                )

            for member in members:
                if isinstance(member, dict) and member.get("id"):
                    entries.append(member)
                else:
                    logger.warning(f"Ignoring member entry without id: {member!r}")

        return entries

    def fetch(
        self, group_id: str, cursor: str | None
    ) -> tuple[str, list[dict[str, Any]]]:
        """
        Drain the feed and return (new cursor token, raw member entries).

        Entries are returned in page order. Nothing is returned until the
        terminal page has been read, so a failure anywhere in the walk leaves
        the caller without a token to persist.

        Args:
            group_id: Object id of the home-tenant group
            cursor: Stored delta link, or None for a full baseline

        Returns:
            Tuple of (terminal delta link, list of raw member entries)

        Raises:
            GraphAPIError: For transport, expiry and malformed-response failures
            AuthError: If the home tenant refuses the request
        """
        entries: list[dict[str, Any]] = []
        delta_link: str | None = None
        pages = 0

        for page in self.iter_pages(group_id, cursor):
            pages += 1
            entries.extend(self._member_entries(group_id, page))
            delta_link = page.get(DELTA_LINK_KEY)

        if not delta_link:
            raise MalformedResponseError(
                f"Delta feed for group {group_id} ended without a deltaLink"
            )

        logger.info(
            f"Fetched {len(entries)} membership change(s) for group {group_id} "
            f"across {pages} page(s)"
        )
        return delta_link, entries
