"""HTTPS transport and Alexa Event Gateway publisher."""

import json
from dataclasses import dataclass, field
from typing import Optional, Union

import requests

from .debug import is_debug_enabled, log_debug, log_error, log_info, log_request, log_response
from .models import MediaEvent


# 202 -> event accepted by the gateway; 200 -> token exchange succeeded
SUCCESS_STATUSES = (200, 202)


@dataclass
class HTTPResponse:
    """Status, headers and body of a completed request."""
    
    status: Optional[int]
    headers: dict = field(default_factory=dict)
    data: str = ""
    
    def json(self) -> dict:
        return json.loads(self.data)


class GatewayError(Exception):
    """Raised when an HTTPS POST is rejected or cannot be completed.
    
    Carries the full response for diagnostics; ``response.status`` is None
    for transport-level failures.
    """
    
    def __init__(self, message: str, response: Optional[HTTPResponse] = None):
        super().__init__(message)
        self.response = response or HTTPResponse(status=None)
    
    @property
    def status(self) -> Optional[int]:
        return self.response.status
    
    def describe(self) -> str:
        """Full diagnostic text for error logs."""
        return (
            f"{self} (status={self.response.status}, "
            f"headers={self.response.headers}, body={self.response.data!r})"
        )


def https_post(
    session: requests.Session,
    host: str,
    path: str,
    headers: dict,
    data: Union[str, bytes],
    timeout: float = 30.0,
    log_bodies: bool = True,
) -> HTTPResponse:
    """
    POST to an HTTPS endpoint.
    
    Args:
        session: HTTP session to send with
        host: Host name, without scheme
        path: Request path
        headers: Request headers
        data: Encoded request body
        timeout: Seconds before the request is abandoned
        log_bodies: Include request and response bodies in debug logs
    
    Returns:
        HTTPResponse for a 200 or 202 reply
    
    Raises:
        GatewayError: On any other status or a transport error
    """
    url = f"https://{host}{path}"
    log_request("POST", url, headers, data if log_bodies else None)
    
    try:
        response = session.post(url, headers=headers, data=data, timeout=timeout)
    except requests.RequestException as e:
        log_error(f"POST {url} failed", e)
        raise GatewayError(f"Request to {url} failed: {e}") from e
    
    result = HTTPResponse(
        status=response.status_code,
        headers=dict(response.headers),
        data=response.text,
    )
    log_response(result.status, result.headers, result.data if log_bodies else None)
    
    if result.status not in SUCCESS_STATUSES:
        raise GatewayError(f"POST {url} returned HTTP {result.status}", result)
    return result


class EventPublisher:
    """Posts MediaEvents to the Alexa Event Gateway.
    
    No retry happens here; the pipeline decides what to do with a failure.
    """
    
    def __init__(
        self,
        host: str,
        path: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize publisher.
        
        Args:
            host: Event Gateway host
            path: Event Gateway path
            session: Optional HTTP session to reuse
            timeout: Request timeout in seconds
        """
        self.host = host
        self.path = path
        self.timeout = timeout
        self._session = session or requests.Session()
    
    def publish(self, event: MediaEvent, token: str) -> HTTPResponse:
        """
        Post one event.
        
        Args:
            event: Event to announce
            token: Valid LWA access token
        
        Returns:
            Gateway response
        
        Raises:
            GatewayError: If the gateway does not accept the event
        """
        message = event.to_message(token)
        message_id = message["event"]["header"]["messageId"]
        log_debug(f"Posting {event.media_id} with message id {message_id}")
        if is_debug_enabled():
            # scope.token is the live access token
            log_debug(f"    Event: {json.dumps(event.to_message('<redacted>', message_id))}")
        
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json;charset=UTF-8",
        }
        response = https_post(
            self._session,
            self.host,
            self.path,
            headers,
            json.dumps(message),
            timeout=self.timeout,
            log_bodies=False,
        )
        log_info(f"Posted {event.media_id} to Alexa Event Gateway.")
        return response
    
    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
    
    def __enter__(self) -> "EventPublisher":
        return self
    
    def __exit__(self, *args) -> None:
        self.close()
