from __future__ import annotations

import logging
from typing import Optional

from .config import HighlightsConfig
from .cookiecloud import EncryptedStoreClient
from .errors import CredentialUnavailable
from .models import Credential

logger = logging.getLogger(__name__)


class CredentialResolver:
    """
    Picks the WeRead cookie from, in order: the caller-supplied token, the
    CookieCloud store (when host and uuid are configured), then the static
    WEREAD_COOKIE setting. Each source is consulted at most once per call.
    """

    def __init__(self, config: HighlightsConfig, store_client: Optional[EncryptedStoreClient] = None):
        self.config = config
        self.store_client = store_client or EncryptedStoreClient()
        self.last_source: Optional[str] = None

    def resolve(self, token: Optional[str] = None) -> Credential:
        self.last_source = None

        supplied = Credential.parse(token)
        if not supplied.is_empty():
            self.last_source = "token"
            return supplied

        if self.config.cookiecloud_configured:
            cloud = self.store_client.fetch(
                self.config.cookiecloud_host,
                self.config.cookiecloud_uuid,
                self.config.cookiecloud_password,
            )
            if cloud is not None and not cloud.is_empty():
                self.last_source = "cookiecloud"
                logger.info("Using credential from CookieCloud")
                return cloud
            logger.info("CookieCloud yielded no credential; trying static configuration")

        static = Credential.parse(self.config.weread_cookie)
        if not static.is_empty():
            self.last_source = "static"
            return static

        raise CredentialUnavailable("Cookie not configured")
