"""Login with Amazon token handling for the Alexa Event Gateway."""

import json
import os
import tempfile
import threading
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import requests

from .debug import log_debug, log_error, log_info
from .gateway import GatewayError, https_post


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Token:
    """An access/refresh token pair as issued by LWA."""
    
    access_token: str
    refresh_token: str
    expires_in: int
    issued_at: datetime
    
    def expires_at(self, preemptive_refresh_seconds: int = 0) -> datetime:
        """Moment after which the token should no longer be used."""
        return self.issued_at + timedelta(seconds=self.expires_in - preemptive_refresh_seconds)
    
    def needs_refresh(self, now: datetime, preemptive_refresh_seconds: int = 0) -> bool:
        return now > self.expires_at(preemptive_refresh_seconds)
    
    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "datetime": self.issued_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> Optional["Token"]:
        """Parse persisted state; None when no token has been granted yet."""
        if not data or data.get("accessToken") is None:
            return None
        issued_at = datetime.fromisoformat(str(data["datetime"]).replace("Z", "+00:00"))
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            expires_in=int(data["expiresIn"]),
            issued_at=issued_at,
        )


@dataclass(frozen=True)
class TokenStatus:
    """Snapshot of the token lifecycle for display."""
    
    state: str  # "NO_TOKEN", "ACTIVE" or "EXPIRED"
    issued_at: Optional[datetime] = None
    refresh_after: Optional[datetime] = None


class TokenExchangeError(Exception):
    """Raised when LWA rejects a token request or the result cannot be stored."""
    
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TokenStore:
    """Durable JSON file holding the current token.
    
    Writes go to a temporary file in the same folder and are moved into
    place, so a crash never leaves a half-written token file behind.
    """
    
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
    
    def load(self) -> Optional[Token]:
        """
        Read the persisted token.
        
        Returns:
            The current Token, or None if none has been granted yet
        
        Raises:
            TokenExchangeError: If the file exists but cannot be parsed
        """
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise TokenExchangeError(f"Cannot read token file {self.path}: {e}") from e
        try:
            return Token.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise TokenExchangeError(f"Malformed token file {self.path}: {e}") from e
    
    def save(self, token: Token) -> None:
        """Atomically replace the persisted token."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tokens-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class TokenManager:
    """Hands out valid LWA access tokens, refreshing ahead of expiry.
    
    States:
        NO_TOKEN: nothing stored; the next request exchanges the one-time
            grant code.
        ACTIVE: a token is stored; it is returned as is until
            ``issued_at + expires_in - preemptive_refresh_seconds`` has
            passed, then it is refreshed.
    
    Requests are serialised with a lock held across the exchange, so callers
    arriving during a refresh wait for it and reuse the new token instead of
    spending the refresh token a second time.
    """
    
    GRANT_HEADERS = {"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"}
    
    def __init__(
        self,
        store: TokenStore,
        client_id: str,
        client_secret: str,
        grant_code: str,
        lwa_host: str = "api.amazon.com",
        lwa_path: str = "/auth/o2/token",
        preemptive_refresh_seconds: int = 60,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize token manager.
        
        Args:
            store: Where the current token is persisted
            client_id: LWA client id of the skill
            client_secret: LWA client secret of the skill
            grant_code: One-time authorization code used when no token exists
            lwa_host: LWA host name
            lwa_path: LWA token path
            preemptive_refresh_seconds: Refresh this long before expiry
            session: Optional HTTP session to reuse
            timeout: Request timeout in seconds
            clock: Returns the current aware datetime
        """
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.grant_code = grant_code
        self.lwa_host = lwa_host
        self.lwa_path = lwa_path
        self.preemptive_refresh_seconds = preemptive_refresh_seconds
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        self._lock = threading.Lock()
    
    def get_token(self) -> str:
        """
        Return a valid access token, exchanging with LWA when needed.
        
        Raises:
            TokenExchangeError: If the exchange fails; stored state is unchanged
        """
        with self._lock:
            token = self.store.load()
            if token is None:
                log_info("Calling LWA to get the access token for the first time...")
                return self._exchange(self._authorization_code_grant()).access_token
            if token.needs_refresh(self._clock(), self.preemptive_refresh_seconds):
                log_info("Calling LWA to refresh the access token...")
                return self._exchange(self._refresh_grant(token)).access_token
            log_debug("Latest access token has not expired, so using it and won't call LWA...")
            return token.access_token
    
    def refresh(self) -> str:
        """Force a refresh (or first grant) regardless of expiry."""
        with self._lock:
            token = self.store.load()
            grant = self._refresh_grant(token) if token else self._authorization_code_grant()
            return self._exchange(grant).access_token
    
    def status(self) -> TokenStatus:
        token = self.store.load()
        if token is None:
            return TokenStatus(state="NO_TOKEN")
        refresh_after = token.expires_at(self.preemptive_refresh_seconds)
        state = "EXPIRED" if self._clock() > refresh_after else "ACTIVE"
        return TokenStatus(state=state, issued_at=token.issued_at, refresh_after=refresh_after)
    
    def _authorization_code_grant(self) -> dict:
        if not self.grant_code:
            raise TokenExchangeError("No stored token and no grant code configured")
        return {
            "grant_type": "authorization_code",
            "code": self.grant_code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
    
    def _refresh_grant(self, token: Token) -> dict:
        return {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
    
    def _exchange(self, grant: dict) -> Token:
        """
        POST a grant to LWA and persist the resulting token.
        
        Must be called with the lock held.
        """
        issued_at = self._clock()
        try:
            response = https_post(
                self._session,
                self.lwa_host,
                self.lwa_path,
                self.GRANT_HEADERS,
                urllib.parse.urlencode(grant),
                timeout=self.timeout,
                log_bodies=False,
            )
        except GatewayError as e:
            log_error(f"LWA {grant['grant_type']} exchange failed: {e.describe()}")
            raise TokenExchangeError(f"LWA exchange failed: {e}", e.status) from e
        
        try:
            data = response.json()
            token = Token(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_in=int(data["expires_in"]),
                issued_at=issued_at,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenExchangeError(f"Unexpected LWA response: {response.data[:200]!r}", response.status) from e
        
        try:
            self.store.save(token)
        except OSError as e:
            raise TokenExchangeError(f"Cannot persist token to {self.store.path}: {e}") from e
        
        log_debug(f"Stored new access token, valid for {token.expires_in}s")
        return token
    
    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
    
    def __enter__(self) -> "TokenManager":
        return self
    
    def __exit__(self, *args) -> None:
        self.close()
