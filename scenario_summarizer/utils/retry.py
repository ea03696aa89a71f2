"""Retry policy for summary LLM calls."""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# Transport-level failures only; HTTP status errors are not retried
RETRYABLE_ERRORS = (TimeoutError, ConnectionError, OSError, httpx.TransportError)

llm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    reraise=True,
)
