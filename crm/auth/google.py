import logging
from typing import Optional

import httpx

from crm.config import settings
from crm.auth.schemas import GoogleAccount

logger = logging.getLogger(__name__)

class GoogleIdentityClient:
    """Looks up the Google account behind an OAuth access token."""

    def __init__(self, userinfo_url: str = settings.GOOGLE_USERINFO_URL, timeout: float = 10):
        self.userinfo_url = userinfo_url
        self.timeout = timeout

    def fetch_userinfo(self, token: str) -> Optional[GoogleAccount]:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.userinfo_url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as exc:
            logger.warning("Google userinfo request failed: %s", exc)
            return None

        if response.status_code != 200:
            logger.info("Google rejected token (status %s)", response.status_code)
            return None

        data = response.json()
        if not data.get("email"):
            return None
        return GoogleAccount(
            email=data["email"],
            name=data.get("name"),
            avatar=data.get("picture"),
            google_id=data.get("sub"),
        )

def get_google_client() -> GoogleIdentityClient:
    return GoogleIdentityClient()
