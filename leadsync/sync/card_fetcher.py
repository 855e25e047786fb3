"""
Card fetcher — full card detail with an outer retry budget.

The client already retries each request three times; this layer adds two
outer attempts with exponential backoff reserved for rate limiting. A card is
reported gone only on an explicit CardNotFoundError, never on an empty or
failed response.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from leadsync.config import CARD_FETCH_RETRIES, RATE_LIMIT_BASE_DELAY, RATE_LIMIT_MAX_DELAY
from leadsync.services.trello import (
    CardNotFoundError, TrelloRateLimitError, is_rate_limit_error,
)

logger = logging.getLogger('sync.card_fetcher')


@dataclass
class CardFetchResult:
    """Outcome of fetching one card: a payload, a not-found signal, or an error."""
    card_id: str
    card: Optional[Dict[str, Any]] = None
    not_found: bool = False
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def rate_limit_backoff(attempt: int) -> float:
    return min(RATE_LIMIT_BASE_DELAY * (2 ** attempt), RATE_LIMIT_MAX_DELAY)


def fetch_card_with_retry(client, card_id: str, retries: int = CARD_FETCH_RETRIES,
                          sleep: Callable[[float], None] = time.sleep,
                          on_rate_limit: Callable[[], None] = None) -> Dict[str, Any]:
    """
    Fetch one card, retrying up to `retries` times.

    Raises CardNotFoundError as-is. Rate limiting backs off 2s, 4s, ... capped
    at 30s; other errors wait 1s × attempt and are re-raised on the last try.
    """
    last_error: Optional[Exception] = None

    for attempt in range(retries):
        try:
            return client.get_card(card_id, on_rate_limit=on_rate_limit)
        except CardNotFoundError:
            raise
        except Exception as e:
            last_error = e
            if is_rate_limit_error(e):
                # Typed errors were already counted by the client on each 429.
                if on_rate_limit and not isinstance(e, TrelloRateLimitError):
                    on_rate_limit()
                if attempt < retries - 1:
                    wait = rate_limit_backoff(attempt)
                    logger.warning("Persistent rate limit for card %s, waiting %.1fs before retrying", card_id, wait)
                    sleep(wait)
                continue
            if attempt == retries - 1:
                raise
            sleep(1.0 * (attempt + 1))

    raise TrelloRateLimitError(
        f"Rate limited fetching card {card_id} after {retries} attempts: {last_error}",
    )


def fetch_card(client, card_id: str, **kwargs) -> CardFetchResult:
    """fetch_card_with_retry folded into a CardFetchResult (never raises)."""
    try:
        return CardFetchResult(card_id=card_id, card=fetch_card_with_retry(client, card_id, **kwargs))
    except CardNotFoundError:
        return CardFetchResult(card_id=card_id, not_found=True)
    except Exception as e:
        return CardFetchResult(card_id=card_id, error=e)
