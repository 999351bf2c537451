import asyncio
from typing import Dict, Hashable, Iterable, List, Callable, Awaitable, Optional, Tuple, Union
import structlog

from ..models.flight import Flight

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 1.0

# A bare identifier, or (identifier, departure date as YYYY-MM-DD) for one dated flight instance
FlightRequest = Union[str, Tuple[str, Optional[str]]]


def _split_request(request: FlightRequest) -> Tuple[str, Optional[str]]:
    if isinstance(request, tuple):
        return request
    return request, None


async def batch_fetch(
    gateway,
    requests: Iterable[FlightRequest],
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> Dict[Hashable, Flight]:
    """
    Fetch many flights through the gateway, a few at a time.

    Requests are de-duplicated, each batch runs concurrently and batches are
    spaced by delay_seconds to stay under provider rate limits. Results are
    keyed by the request as given, so the same flight number on two dates stays
    two entries. Requests with no data, or whose fetch raised, are simply
    absent from the result.
    """
    unique: List[FlightRequest] = list(dict.fromkeys(r for r in requests if r and _split_request(r)[0]))
    results: Dict[Hashable, Flight] = {}

    if not unique:
        return results

    batch_size = max(1, batch_size)
    batches = [unique[i:i + batch_size] for i in range(0, len(unique), batch_size)]

    for index, batch in enumerate(batches):
        outcomes = await asyncio.gather(
            *(gateway.fetch_flight(*_split_request(request)) for request in batch),
            return_exceptions=True
        )

        for request, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                identifier, departure_date = _split_request(request)
                logger.error("batch_fetch_error",
                    identifier=identifier,
                    departure_date=departure_date,
                    error_type=type(outcome).__name__,
                    error=str(outcome)
                )
                continue
            if outcome is not None:
                results[request] = outcome

        if index < len(batches) - 1 and delay_seconds > 0:
            await sleep(delay_seconds)

    logger.info("batch_fetch_completed",
        requested=len(unique),
        fetched=len(results),
        batches=len(batches)
    )
    return results
