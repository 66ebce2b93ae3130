"""Interactive UI components for picking subscriptions."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import SubscriptionRecord

logger = logging.getLogger(__name__)


def display_name(record: SubscriptionRecord) -> str:
    """Name plus a short id so duplicates stay distinguishable."""
    return f"{record.name} ({record.id[:8]})"


class SubscriptionCompleter(Completer):
    """Fuzzy search completer for subscriptions."""

    def __init__(self, records: list[SubscriptionRecord]):
        """Initialize the completer with the available subscriptions."""
        self.records = records
        self.name_to_id = {display_name(record): record.id for record in records}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for full_name in self.name_to_id:
            if not query or self._fuzzy_match(query, full_name.lower()):
                yield Completion(
                    text=full_name,
                    start_position=-len(document.text),
                    display=full_name,
                )

    def _fuzzy_match(self, query: str, text: str) -> bool:
        """
        Fuzzy match: all characters in query must appear in order in text.

        Example:
            query="nfx" matches "Netflix"
        """
        query_idx = 0
        for char in text:
            if query_idx < len(query) and char == query[query_idx]:
                query_idx += 1
        return query_idx == len(query)


def select_subscription_interactive(
    records: list[SubscriptionRecord], action: str = "Select"
) -> str | None:
    """
    Interactive subscription selection with fuzzy search.

    Args:
        records: Subscriptions to choose from
        action: Verb shown in the prompt

    Returns:
        Selected record id, or None to skip
    """
    if not records:
        return None

    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    completer = SubscriptionCompleter(records)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt(f"{action}: ", complete_while_typing=True)

            if not result:
                return None

            record_id = completer.name_to_id.get(result)
            if record_id:
                logger.info(f"User selected subscription {record_id}")
                return record_id

            print("❌ Unknown subscription. Pick one from the list or press Tab.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def confirm(message: str, default: bool = False) -> bool:
    """Simple yes/no confirmation."""
    suffix = "[Y/n]" if default else "[y/N]"
    response = input(f"{message} {suffix} ").strip().lower()
    if not response:
        return default
    return response in ("y", "yes")
