# oracle/catalog/steam_client.py
"""
Cliente da Steam Web API usado pela sincronização do catálogo.

Responsável por:
- Listar todos os app IDs de jogos (IStoreService/GetAppList, paginado).
- Buscar metadados em lote (IStoreBrowseService/GetItems).
- Listar nomes de tags (IStoreService/GetTagList).

Observações:
- Retorna dados *brutos* (dict/list). A normalização fica em
  schemas.catalog_entry.CatalogEntry.from_source().
- Mesma política de timeout/retry dos demais clientes (oracle.http).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from oracle.http import RetryingHttpClient, ensure_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppRef:
    app_id: int
    name: str


@dataclass(frozen=True)
class TagRef:
    tag_id: int
    name: str


class CatalogDataSource(Protocol):
    """Contrato da fonte de dados do catálogo (permite fakes nos testes)."""

    def get_app_ids(self) -> List[AppRef]: ...

    def fetch_batch(self, app_ids: Sequence[int]) -> List[Dict[str, Any]]: ...

    def get_tag_list(self) -> List[TagRef]: ...


class SteamCatalogClient(RetryingHttpClient):
    """
    Endpoints usados:
      - GET /IStoreService/GetAppList/v1/        -> response.apps[{appid, name}]
      - GET /IStoreBrowseService/GetItems/v1/    -> response.store_items[...]
      - GET /IStoreService/GetTagList/v1/        -> response.tags[{tagid, name}]
    """

    def __init__(self, cfg, transport: Optional[httpx.BaseTransport] = None) -> None:
        super().__init__(
            cfg,
            getattr(cfg, "STEAM_WEB_API_BASE", "https://api.steampowered.com"),
            transport=transport,
        )
        self.api_key = getattr(cfg, "STEAM_API_KEY", None) or ""
        self.page_size = int(getattr(cfg, "STEAM_APP_LIST_PAGE_SIZE", 50000))
        self.language = getattr(cfg, "STEAM_LANGUAGE", "english")
        self.country_code = getattr(cfg, "STEAM_COUNTRY_CODE", "US")

    @classmethod
    def from_config(cls, cfg) -> "SteamCatalogClient":
        return cls(cfg)

    # ---------- App list ----------
    def get_app_ids(self) -> List[AppRef]:
        """Percorre todas as páginas do GetAppList (só jogos, sem DLC/software)."""
        apps: List[AppRef] = []
        last_appid: Optional[int] = None
        while True:
            params: Dict[str, Any] = {
                "key": self.api_key,
                "max_results": self.page_size,
                "include_games": "true",
                "include_dlc": "false",
                "include_software": "false",
                "include_videos": "false",
                "include_hardware": "false",
            }
            if last_appid is not None:
                params["last_appid"] = last_appid

            data = ensure_json(self._request_with_retry("GET", "/IStoreService/GetAppList/v1/", params=params))
            body = (data or {}).get("response") or {}
            for app in body.get("apps") or []:
                name = app.get("name")
                if name:
                    apps.append(AppRef(app_id=int(app["appid"]), name=str(name)))

            last_appid = body.get("last_appid")
            if not body.get("have_more_results") or not last_appid:
                break

        logger.info(f"GetAppList retornou {len(apps)} apps")
        return apps

    # ---------- Metadados ----------
    def fetch_batch(self, app_ids: Sequence[int]) -> List[Dict[str, Any]]:
        """Metadados brutos de até CATALOG_BATCH_SIZE apps."""
        if not app_ids:
            return []
        request = {
            "ids": [{"appid": int(a)} for a in app_ids],
            "context": {"language": self.language, "country_code": self.country_code},
            "data_request": {
                "include_assets": False,
                "include_release": True,
                "include_platforms": True,
                "include_all_purchase_options": False,
                "include_screenshots": False,
                "include_trailers": False,
                "include_ratings": True,
                "include_tag_count": 20,
                "include_reviews": True,
                "include_basic_info": True,
                "include_supported_languages": False,
            },
        }
        params = {"input_json": json.dumps(request, separators=(",", ":"))}
        data = ensure_json(self._request_with_retry("GET", "/IStoreBrowseService/GetItems/v1/", params=params))
        items = ((data or {}).get("response") or {}).get("store_items") or []
        return [it for it in items if isinstance(it, dict)]

    # ---------- Tags ----------
    def get_tag_list(self) -> List[TagRef]:
        params = {"key": self.api_key, "language": self.language}
        data = ensure_json(self._request_with_retry("GET", "/IStoreService/GetTagList/v1/", params=params))
        tags = ((data or {}).get("response") or {}).get("tags") or []
        return [TagRef(tag_id=int(t["tagid"]), name=str(t.get("name", ""))) for t in tags if "tagid" in t]
