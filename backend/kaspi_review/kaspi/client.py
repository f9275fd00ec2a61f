# backend/kaspi_review/kaspi/client.py

"""
Kaspi ショップ API との通信を担当するクライアントモジュール。

レスポンスは JSON:API 形式（`data` エンベロープ）。
`data` が無い場合はエラーではなく「結果なし」として扱う。
"""

from typing import Any, Dict, List, Optional

import httpx

from .config import KaspiSettings, get_kaspi_settings

_CONTENT_TYPE = "application/vnd.api+json"


class KaspiClientError(RuntimeError):
    """Kaspi クライアント全般の例外。"""


class KaspiAuthError(KaspiClientError):
    """認証・権限関連のエラー。"""


class KaspiAPIError(KaspiClientError):
    """その他 Kaspi API 呼び出し時のエラー（4xx/5xx, 不正なレスポンス形式）。"""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KaspiConnectionError(KaspiClientError):
    """接続エラー・タイムアウト時の例外。"""


class KaspiClient:
    """
    Kaspi ショップ API の薄いラッパークライアント。

    - 注文一覧（ページング）
    - 注文詳細 / 注文明細 / 商品詳細
    - 注文ステータス更新
    """

    def __init__(self, settings: Optional[KaspiSettings] = None) -> None:
        self._settings = settings or get_kaspi_settings()

    @property
    def settings(self) -> KaspiSettings:
        return self._settings

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": _CONTENT_TYPE,
            "Accept": _CONTENT_TYPE,
            "X-Auth-Token": self._settings.api_key,
        }

    def _url(self, path: str) -> str:
        return f"{self._settings.api_base_url}/{path.lstrip('/')}"

    def _raise_for_status(self, response: httpx.Response) -> None:
        """
        HTTP レスポンスコードに応じて適切な例外を投げる。
        """
        if response.status_code in (401, 403):
            raise KaspiAuthError(
                f"Kaspi API rejected credentials ({response.status_code}). Check KASPI_API_KEY."
            )
        if response.status_code >= 400:
            raise KaspiAPIError(
                f"Kaspi API error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = httpx.request(
                method,
                self._url(path),
                headers=self._build_headers(),
                params=params,
                json=json,
                timeout=self._settings.timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise KaspiConnectionError(f"Failed to call Kaspi API {path}: {exc}") from exc

        self._raise_for_status(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise KaspiAPIError(f"Kaspi API returned non-JSON body for {path}") from exc

        if not isinstance(body, dict):
            raise KaspiAPIError(f"Unexpected Kaspi API response format for {path}")
        return body

    @staticmethod
    def _extract_list(body: Dict[str, Any]) -> List[Dict[str, Any]]:
        data = body.get("data")
        if data is None:
            return []
        if not isinstance(data, list):
            raise KaspiAPIError("Unexpected Kaspi API response format: 'data' is not a list.")
        return [item for item in data if isinstance(item, dict)]

    @staticmethod
    def _extract_object(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        data = body.get("data")
        if isinstance(data, dict):
            return data
        return None

    # ---- 公開 API ------------------------------------------------------

    def list_orders(
        self,
        *,
        created_from_ms: int,
        created_to_ms: int,
        status: str,
        page_number: int = 0,
        page_size: int = 100,
    ) -> Dict[str, Any]:
        """
        creationDate の範囲とステータスで注文一覧の 1 ページを取得する。

        返り値は {"orders": [...], "page_count": Optional[int], "raw_count": int}。
        raw_count は不正なレコードを除く前の件数（ページング判定用）。
        """
        params = {
            "page[number]": page_number,
            "page[size]": page_size,
            "filter[orders][creationDate][$ge]": created_from_ms,
            "filter[orders][creationDate][$le]": created_to_ms,
            "filter[orders][status]": status,
            "include[orders]": "user",
        }
        body = self._request("GET", "/orders", params=params)

        page_count: Optional[int] = None
        meta = body.get("meta")
        if isinstance(meta, dict) and isinstance(meta.get("pageCount"), int):
            page_count = meta["pageCount"]

        data = body.get("data")
        raw_count = len(data) if isinstance(data, list) else 0
        return {"orders": self._extract_list(body), "page_count": page_count, "raw_count": raw_count}

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not order_id:
            raise ValueError("order_id is required")
        return self._extract_object(self._request("GET", f"/orders/{order_id}"))

    def get_order_entries(self, order_id: str) -> List[Dict[str, Any]]:
        if not order_id:
            raise ValueError("order_id is required")
        return self._extract_list(self._request("GET", f"/orders/{order_id}/entries"))

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        if not product_id:
            raise ValueError("product_id is required")
        return self._extract_object(self._request("GET", f"/masterproducts/{product_id}"))

    def update_order_status(self, order_id: str, status: str) -> Optional[Dict[str, Any]]:
        """
        注文ステータスを更新する（JSON:API 形式で POST /orders）。
        """
        if not order_id:
            raise ValueError("order_id is required")
        payload = {
            "data": {
                "type": "orders",
                "id": order_id,
                "attributes": {"status": status},
            }
        }
        return self._extract_object(self._request("POST", "/orders", json=payload))
