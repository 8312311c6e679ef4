"""
Mailbox collaborator contract.

The worker never speaks IMAP or the Gmail API itself; a mailbox yields
already-decoded RawMessages for a search query.
"""

from typing import Protocol

from shipwatch.models.message import RawMessage

# Last 90 days from known merchants, carriers and Shopify stores, or any
# sender with shipping wording in the subject
DEFAULT_MAILBOX_QUERY = " ".join(
    """
    newer_than:90d AND (
      from:(flipkart.com OR amazon.in OR myntra.com OR meesho.com OR ajio.com OR nykaa.com OR snapdeal.com OR tatacliq.com) OR
      from:(delhivery.com OR bluedart.com OR dtdc.com OR ecomexpress.in OR xpressbees.com OR shiprocket.in OR shadowfax.in OR ekartlogistics.com) OR
      from:(shopifymail.com OR shopify.com) OR
      subject:(shipped OR dispatched OR "on the way" OR "out for delivery" OR delivered OR tracking OR "order confirmed" OR "your order")
    )
    """.split()
)


class MailboxAuthError(Exception):
    """The mailbox credentials are missing, expired or revoked."""


class Mailbox(Protocol):
    """Source of decoded messages for one user."""

    async def search_messages(self, query: str, max_results: int) -> list[RawMessage]:
        """
        Return messages matching `query`, at most `max_results`.

        Raises:
            MailboxAuthError: The user must re-authenticate
        """
        ...
