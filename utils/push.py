"""Firebase Cloud Messaging push delivery over the FCM HTTP v1 API."""
from __future__ import annotations

import threading
from typing import Dict, Optional

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from utils.errors import TransportFailure

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


class PushSender:
    def send(self, device_token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError


class FcmPushSender(PushSender):
    def __init__(self, *, project_id: str, client_email: str, private_key: str, timeout: float = 10) -> None:
        self.project_id = project_id
        self.client_email = client_email
        self.private_key = private_key
        self.timeout = timeout
        self._credentials = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "FcmPushSender":
        return cls(
            project_id=config.get("FIREBASE_PROJECT_ID", ""),
            client_email=config.get("FIREBASE_CLIENT_EMAIL", ""),
            private_key=config.get("FIREBASE_PRIVATE_KEY", ""),
        )

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.client_email and self.private_key)

    def _bearer_token(self) -> str:
        if not self.configured:
            raise TransportFailure("Firebase credentials are not fully configured.")
        with self._lock:
            if self._credentials is None:
                self._credentials = service_account.Credentials.from_service_account_info(
                    {
                        "type": "service_account",
                        "project_id": self.project_id,
                        "client_email": self.client_email,
                        "private_key": self.private_key,
                        "token_uri": "https://oauth2.googleapis.com/token",
                    },
                    scopes=[FCM_SCOPE],
                )
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(GoogleAuthRequest())
                except GoogleAuthError as exc:
                    raise TransportFailure(f"FCM credential refresh failed: {exc}") from exc
            return self._credentials.token

    def send(self, device_token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> None:
        message = {
            "token": device_token,
            "notification": {"title": title, "body": body},
        }
        if data:
            # FCM data payloads only accept string values.
            message["data"] = {k: str(v) for k, v in data.items() if v is not None}
        try:
            response = requests.post(
                FCM_SEND_URL.format(project_id=self.project_id),
                headers={"Authorization": f"Bearer {self._bearer_token()}"},
                json={"message": message},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"FCM request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportFailure(f"FCM error: {response.status_code}")
