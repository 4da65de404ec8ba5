"""Session credentials read by the REST transport and the gateway."""

from dataclasses import dataclass

SESSION_COOKIE_NAME = "interpals_sessid"


@dataclass(frozen=True)
class SessionCredentials:
    """An auth token and/or session identifier obtained elsewhere.

    The library never logs in or stores credentials; it only reads them
    when building request headers and the gateway URL.
    """

    auth_token: str | None = None
    session_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token or self.session_id)

    @property
    def gateway_token(self) -> str | None:
        return self.auth_token or self.session_id or None

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if self.session_id:
            headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self.session_id}"
        return headers
