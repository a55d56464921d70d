"""
Client HTTP de l'API présences, côté écran (httpx asynchrone).

Toute réponse non 2xx devient AttendanceApiError avec le code HTTP et le message
{"error": ...} du serveur. Les erreurs de transport (réseau, timeout) restent des
httpx.HTTPError : c'est à l'appelant de décider s'il bascule sur un autre chemin.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

ATTENDANCE_PATH = "/api/v1/attendance"


class AttendanceApiError(Exception):
    """Réponse non 2xx de l'API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code} : {message}")
        self.status_code = status_code
        self.message = message

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class AttendanceApiClient:
    """Enveloppe fine autour de httpx.AsyncClient, authentifiée par jeton porteur."""

    def __init__(
        self,
        base_url: str = "",
        token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def __aenter__(self) -> "AttendanceApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        response = await self._http.request(method, url, headers=self._headers, **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise AttendanceApiError(response.status_code, message or response.reason_phrase)
        return data

    async def fetch_roster(self) -> Dict[str, Any]:
        return await self._request("GET", f"{ATTENDANCE_PATH}/roster")

    async def fetch_class_attendance(self, class_id: str, day: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", ATTENDANCE_PATH, params={"classId": class_id, "date": day})
        return data.get("attendance", [])

    async def upsert_batch(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        data = await self._request("POST", f"{ATTENDANCE_PATH}/batch", json={"records": records})
        return data.get("attendance", [])

    async def upsert_one(self, record: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", ATTENDANCE_PATH, json=record)
        return data.get("attendance", {})
