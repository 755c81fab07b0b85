# src/tasker/notifications/push_sender.py

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx

from ..core.errors import DispatchFailure

logger = logging.getLogger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


def build_fcm_message(*, token: str, title: str, body: str) -> dict[str, Any]:
    """FCM HTTP v1 message: visible notification, high priority on Android, sound on iOS."""
    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
            "android": {"priority": "high"},
            "apns": {
                "payload": {
                    "aps": {
                        "alert": {"title": title, "body": body},
                        "sound": "default",
                        "content-available": 1,
                    }
                }
            },
        }
    }


class FcmPushSender:
    """
    Firebase Cloud Messaging sender (HTTP v1 API).

    The OAuth access token is provisioned outside this process and passed in
    as-is. Retries are not done here; the job queue owns them.
    """

    def __init__(
        self,
        *,
        project_id: str,
        access_token: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not project_id or not access_token:
            raise ValueError("FCM project id and access token are required")
        self._url = FCM_SEND_URL.format(project_id=project_id)
        self._access_token = access_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds))
        )

    async def send(self, *, token: str, title: str, body: str) -> str:
        try:
            resp = await self._client.post(
                self._url,
                json=build_fcm_message(token=token, title=title, body=body),
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DispatchFailure(
                f"FCM rejected message: HTTP {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DispatchFailure(f"FCM request failed: {exc}") from exc

        try:
            receipt = str(resp.json().get("name", ""))
        except ValueError:
            receipt = ""
        logger.debug("FCM accepted message receipt=%s", receipt)
        return receipt

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LoggingPushSender:
    """Push sender used when FCM is not configured: logs instead of sending."""

    async def send(self, *, token: str, title: str, body: str) -> str:
        receipt = f"local-{uuid.uuid4()}"
        logger.info("Push (not sent, FCM not configured) token=%s title=%r body=%r", token[:12], title, body)
        return receipt

    async def aclose(self) -> None:
        return
