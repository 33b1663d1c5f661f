import requests
from typing import Optional

from errors import AuthError, RemoteError


class FitnessClient:
    """Simple REST client for the fitness API.

    ``session`` may be any object with the ``requests.Session`` call interface,
    e.g. a FastAPI ``TestClient``.
    """

    def __init__(self, base_url: str = "http://localhost:8000", session=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    def _headers(self) -> dict:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    @staticmethod
    def _check(resp):
        if resp.status_code < 400:
            return resp.json()
        try:
            message = resp.json().get("error") or resp.text
        except ValueError:
            message = resp.text
        if resp.status_code == 401:
            raise AuthError(message or "Unauthorized", "invalid_token")
        raise RemoteError(message, status=resp.status_code)

    def _keep(self, session: Optional[dict]) -> None:
        if session:
            self.access_token = session["access_token"]
            self.refresh_token = session["refresh_token"]

    def sign_up(self, email: str, password: str, name: Optional[str] = None, unit_preference: str = "metric") -> dict:
        resp = self.session.post(
            f"{self.base_url}/auth/signup",
            json={"email": email, "password": password, "name": name, "unitPreference": unit_preference},
        )
        data = self._check(resp)
        self._keep(data.get("session"))
        return data

    def sign_in(self, email: str, password: str) -> dict:
        resp = self.session.post(
            f"{self.base_url}/auth/signin", json={"email": email, "password": password}
        )
        data = self._check(resp)
        self._keep(data["session"])
        return data["session"]

    def refresh(self) -> dict:
        resp = self.session.post(
            f"{self.base_url}/auth/refresh", json={"refresh_token": self.refresh_token}
        )
        data = self._check(resp)
        self._keep(data["session"])
        return data["session"]

    def send_magic_link(self, email: str) -> str:
        resp = self.session.post(f"{self.base_url}/auth/magiclink", json={"email": email})
        return self._check(resp)["message"]

    def session_user(self) -> dict:
        resp = self.session.get(f"{self.base_url}/session", headers=self._headers())
        return self._check(resp)["user"]

    def get_profile(self) -> dict:
        resp = self.session.get(f"{self.base_url}/profile", headers=self._headers())
        return self._check(resp)["profile"]

    def update_profile(self, **fields) -> dict:
        resp = self.session.patch(
            f"{self.base_url}/profile", json=fields, headers=self._headers()
        )
        return self._check(resp)["profile"]

    def list_exercises(self) -> list:
        return self._check(self.session.get(f"{self.base_url}/exercises"))

    def list_equipment(self) -> list:
        return self._check(self.session.get(f"{self.base_url}/equipment"))
