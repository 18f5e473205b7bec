"""Push notification dispatcher - sends nudges to devices via the Expo push service"""
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional
import time
import requests
from supabase import Client
from app.config import settings
from app.exceptions import PushDispatchError
from app.models.push import PushPayload, PushResult, PushToken
from app.utils.monitoring import StructuredLogger

PUSH_TOKENS_TABLE = "push_tokens"
EXPO_MAX_MESSAGES_PER_REQUEST = 100
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class PushDispatcher(ABC):
    """Delivers push messages to a user's registered devices"""

    @abstractmethod
    def get_push_tokens(self, user_id: str) -> List[PushToken]:
        """Registered device tokens for a user"""
        pass

    @abstractmethod
    def send(self, payloads: List[PushPayload]) -> List[PushResult]:
        """Send payloads, returning one result per payload in order"""
        pass

    @abstractmethod
    def remove_token(self, user_id: str, token: str) -> None:
        """Forget a token the push service reported as no longer registered"""
        pass


class ExpoPushDispatcher(PushDispatcher):
    """PushDispatcher for the Expo push API, with tokens kept in Supabase"""

    def __init__(
        self,
        client: Client,
        session: Optional[requests.Session] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.session = session or requests.Session()
        self.api_url = api_url or settings.EXPO_PUSH_API_URL
        self.timeout = timeout if timeout is not None else settings.PUSH_REQUEST_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.PUSH_MAX_RETRIES
        self._sleep = sleep

    def get_push_tokens(self, user_id: str) -> List[PushToken]:
        response = self.client.table(PUSH_TOKENS_TABLE).select("token, platform").eq("user_id", user_id).execute()

        tokens: Dict[str, PushToken] = {}
        for row in response.data or []:
            token = row.get("token")
            if not token:
                continue
            tokens[token] = PushToken(token=token, platform=row.get("platform") or "ios")
        return list(tokens.values())

    def send(self, payloads: List[PushPayload]) -> List[PushResult]:
        results: List[PushResult] = []
        for start in range(0, len(payloads), EXPO_MAX_MESSAGES_PER_REQUEST):
            chunk = payloads[start:start + EXPO_MAX_MESSAGES_PER_REQUEST]
            results.extend(self._send_chunk(chunk))
        return results

    def _send_chunk(self, payloads: List[PushPayload]) -> List[PushResult]:
        body = [payload.to_expo() for payload in payloads]
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                self._sleep(0.5 * (2 ** (attempt - 1)))
            try:
                response = self.session.post(
                    self.api_url,
                    json=body,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                        "Accept-Encoding": "gzip, deflate",
                    },
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                last_error = e
                StructuredLogger.log_event(
                    "push_request_failed",
                    f"Push request failed: {str(e)}",
                    metadata={"attempt": attempt + 1, "messages": len(payloads)},
                    level="WARNING",
                )
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                last_error = PushDispatchError(f"Push service returned {response.status_code}")
                StructuredLogger.log_event(
                    "push_request_retryable",
                    f"Push service returned {response.status_code}",
                    metadata={"attempt": attempt + 1, "messages": len(payloads)},
                    level="WARNING",
                )
                continue

            if response.status_code >= 400:
                # The request itself was rejected; retrying will not help
                StructuredLogger.log_event(
                    "push_request_rejected",
                    f"Push service rejected request with {response.status_code}",
                    metadata={"body": response.text[:500]},
                    level="ERROR",
                )
                return [
                    PushResult(status="error", message=f"HTTP {response.status_code}")
                    for _ in payloads
                ]

            return self._parse_tickets(response.json(), len(payloads))

        raise PushDispatchError(f"Push service unreachable after {self.max_retries + 1} attempts: {last_error}")

    @staticmethod
    def _parse_tickets(body: dict, expected: int) -> List[PushResult]:
        tickets = body.get("data") or []
        if isinstance(tickets, dict):
            tickets = [tickets]

        results = []
        for ticket in tickets:
            details = ticket.get("details") or {}
            results.append(PushResult(
                status="ok" if ticket.get("status") == "ok" else "error",
                id=ticket.get("id"),
                message=ticket.get("message"),
                failure_reason=details.get("error"),
            ))

        # Pad so callers can zip results with tokens
        while len(results) < expected:
            results.append(PushResult(status="error", message="Missing push ticket"))
        return results[:expected]

    def remove_token(self, user_id: str, token: str) -> None:
        try:
            response = (
                self.client.table(PUSH_TOKENS_TABLE)
                .delete()
                .eq("user_id", user_id)
                .eq("token", token)
                .execute()
            )
            if response.data:
                StructuredLogger.log_event(
                    "nudge_push_token_pruned",
                    f"Removed unregistered push token for user {user_id}",
                    user_id=user_id,
                )
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "remove_token", "user_id": user_id},
                user_id=user_id,
            )
