from __future__ import annotations

import logging
import ssl
import time
from enum import Enum
from typing import Callable

import httpx

from kana.config import Settings


logger = logging.getLogger(__name__)


class VerificationError(RuntimeError):
    pass


class SiteTimeoutError(VerificationError):
    """The site never answered 200 within the retry budget."""
    pass


class SiteUnreachableError(VerificationError):
    """A transport error occurred while polling the site."""
    pass


class VerifierState(str, Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED_TIMEOUT = "failed-timeout"
    FAILED_ERROR = "failed-error"


class ReadinessVerifier:
    """Polls a site's secure URL until it answers 200."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self._transport = transport
        self._sleep = sleep
        self.state = VerifierState.POLLING
        self.attempts = 0

    def _ssl_context(self) -> ssl.SSLContext:
        # The root certificate is loaded as trust material, but hostname and
        # chain checks are relaxed for the loopback development certificate.
        cert_path = self.settings.root_cert_path
        try:
            context = ssl.create_default_context(cafile=str(cert_path))
        except (OSError, ssl.SSLError) as e:
            raise VerificationError(f"Unable to load root certificate {cert_path}: {e}") from e
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def _client(self) -> httpx.Client:
        if self._transport is not None:
            return httpx.Client(transport=self._transport, timeout=10.0, follow_redirects=True)
        return httpx.Client(verify=self._ssl_context(), timeout=10.0, follow_redirects=True)

    def verify(self, url: str) -> bool:
        """Poll `url` until it returns 200.

        Raises SiteUnreachableError on the first transport error and
        SiteTimeoutError once `verify_attempts` non-200 responses were seen.
        """
        self.state = VerifierState.POLLING
        self.attempts = 0
        max_attempts = self.settings.verify_attempts

        with self._client() as client:
            while self.attempts < max_attempts:
                self.attempts += 1
                try:
                    response = client.get(url)
                except httpx.TransportError as e:
                    self.state = VerifierState.FAILED_ERROR
                    raise SiteUnreachableError(f"Unable to reach {url}: {e}") from e

                if response.status_code == 200:
                    self.state = VerifierState.SUCCEEDED
                    logger.debug("%s answered 200 after %d attempt(s)", url, self.attempts)
                    return True

                logger.debug(
                    "%s answered %d (attempt %d/%d)",
                    url, response.status_code, self.attempts, max_attempts,
                )
                if self.attempts < max_attempts:
                    self._sleep(self.settings.verify_interval)

        self.state = VerifierState.FAILED_TIMEOUT
        raise SiteTimeoutError(f"Timeout reached. Unable to open {url}")
