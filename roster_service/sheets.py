"""
Google Sheets write-back.

Authenticates as a service account: a signed RS256 assertion is exchanged for
a short-lived access token, which is then used against the Sheets values API.
"""
import json
import logging
import time
from typing import Optional

import jwt
import requests

from roster_service.errors import WriteBackFailed

logger = logging.getLogger(__name__)

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
# refresh this long before the token actually expires
EXPIRY_MARGIN_SECONDS = 60


def load_credentials(credentials_json: Optional[str]) -> Optional[dict]:
    """Parse service-account JSON. Raises ValueError when it is unusable."""
    if not credentials_json:
        return None
    credentials = json.loads(credentials_json)
    if not isinstance(credentials, dict):
        raise ValueError("Service account credentials must be a JSON object")
    missing = [k for k in ("client_email", "private_key") if not credentials.get(k)]
    if missing:
        raise ValueError(f"Service account credentials missing {missing}")
    # keys pasted into env vars often carry literal "\n"
    credentials["private_key"] = credentials["private_key"].replace("\\n", "\n")
    return credentials


class ServiceAccountTokenProvider:
    def __init__(self, credentials: dict, scope: str = SHEETS_SCOPE, token_url: str = TOKEN_URL,
                 timeout: float = 10, clock=time.time):
        self.client_email = credentials["client_email"]
        self.private_key = credentials["private_key"]
        self.scope = scope
        self.token_url = token_url
        self.timeout = timeout
        self.clock = clock
        self._token = None
        self._expires_at = 0

    def build_assertion(self) -> str:
        now = int(self.clock())
        payload = {
            "iss": self.client_email,
            "scope": self.scope,
            "aud": self.token_url,
            "iat": now,
            "exp": now + ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256", headers={"typ": "JWT"})

    def get_token(self) -> str:
        if self._token and self.clock() < self._expires_at - EXPIRY_MARGIN_SECONDS:
            return self._token

        try:
            assertion = self.build_assertion()
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise WriteBackFailed(f"Could not sign token assertion for {self.client_email}: {e}")

        try:
            response = requests.post(
                self.token_url,
                data={"grant_type": JWT_GRANT_TYPE, "assertion": assertion},
                timeout=self.timeout,
            )
            token_data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise WriteBackFailed(f"Token exchange failed: {e}")

        if not token_data.get("access_token"):
            raise WriteBackFailed(f"Failed to get access token: {json.dumps(token_data)}")

        self._token = token_data["access_token"]
        self._expires_at = self.clock() + int(token_data.get("expires_in", ASSERTION_LIFETIME_SECONDS))
        logger.debug("Obtained access token for %s", self.client_email)
        return self._token


class SheetsWriter:
    def __init__(self, spreadsheet_id: str, token_provider: ServiceAccountTokenProvider,
                 sheet_name: str = "Sheet1", timeout: float = 10):
        self.spreadsheet_id = spreadsheet_id
        self.token_provider = token_provider
        self.sheet_name = sheet_name
        self.timeout = timeout

    def update_cell(self, cell: str, value: str) -> None:
        """Write a single value, e.g. ``update_cell("D7", "paid")``."""
        cell_range = f"{self.sheet_name}!{cell}"
        url = f"{SHEETS_API}/{self.spreadsheet_id}/values/{cell_range}"
        headers = {"Authorization": f"Bearer {self.token_provider.get_token()}"}

        try:
            response = requests.put(
                url,
                params={"valueInputOption": "RAW"},
                headers=headers,
                json={"values": [[value]]},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise WriteBackFailed(f"Failed to update {cell_range}: {e}")

        if not response.ok:
            raise WriteBackFailed(f"Failed to update {cell_range}: {response.status_code} {response.text}")
        logger.debug("Updated %s", cell_range)
