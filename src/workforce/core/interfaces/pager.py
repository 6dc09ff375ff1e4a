"""History pager protocol used to fetch older history pages on demand."""

from typing import Any, Protocol


class HistoryPagerProtocol(Protocol):
    async def get_page(self, conversation_id: str, page_index: int) -> list[dict[str, Any]]:
        """Return the messages of ``page_index`` (0 is the newest page)."""
        ...
