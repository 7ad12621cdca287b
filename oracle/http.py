# oracle/http.py
"""
Base HTTP compartilhada pelos clientes externos (Ollama, Steam Web API).

Responsabilidades:
- Timeouts granulares a partir do OracleConfig.
- Retry com backoff exponencial (com jitter ±20%), respeitando Retry-After.
- Decodificação JSON com mensagens de erro claras.

Observações:
- Os clientes retornam dados *brutos* (dict/list); a normalização fica a cargo
  dos modelos pydantic em schemas/ (ex.: CatalogEntry.from_source()).
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
    httpx.WriteError,
    httpx.ReadTimeout,
)


# -----------------------------
# Helpers internos
# -----------------------------
def build_timeout(cfg, read: Optional[float] = None) -> httpx.Timeout:
    """Monta timeouts granulares a partir do OracleConfig."""
    return httpx.Timeout(
        connect=getattr(cfg, "HTTP_TIMEOUT_CONNECT", 3.0),
        read=read if read is not None else getattr(cfg, "HTTP_TIMEOUT_READ", 15.0),
        write=getattr(cfg, "HTTP_TIMEOUT_WRITE", 3.0),
        pool=getattr(cfg, "HTTP_TIMEOUT_POOL", 3.0),
    )


def retry_delay(attempt_idx: int, base: float, retry_after: Optional[float]) -> float:
    """
    Calcula o delay de retry:
    - Se houver Retry-After (segundos), prioriza.
    - Senão: backoff exponencial com jitter (±20%).
    """
    if retry_after is not None and retry_after > 0:
        return float(retry_after)
    delay = base * (2 ** attempt_idx)
    jitter = delay * random.uniform(-0.2, 0.2)
    return max(0.0, delay + jitter)


def should_retry(status_code: Optional[int], exc: Optional[BaseException]) -> bool:
    """
    Define se vale tentar novamente:
    - Erros de rede/transientes do httpx
    - HTTP 408, 429 e 5xx
    """
    if exc is not None:
        return isinstance(exc, _TRANSIENT_ERRORS)
    if status_code is None:
        return False
    if status_code in (408, 429):
        return True
    return 500 <= status_code <= 599


def _parse_retry_after(resp: httpx.Response) -> Optional[float]:
    hdr = resp.headers.get("Retry-After")
    if not hdr:
        return None
    try:
        return float(hdr)
    except ValueError:
        return None


def ensure_json(resp: httpx.Response) -> Any:
    """Faz resp.json() com mensagem de erro clara."""
    try:
        return resp.json()
    except ValueError as e:
        text = (resp.text or "")[:500]
        ctype = resp.headers.get("Content-Type") or ""
        raise ValueError(
            f"Resposta não-JSON (status {resp.status_code}). Content-Type='{ctype}'. Trecho: {text!r}"
        ) from e


# -----------------------------
# Cliente HTTP (context manager)
# -----------------------------
class RetryingHttpClient:
    """
    Encapsula o httpx.Client com timeout, headers e retry/backoff.
    Reutiliza conexões (pool). Subclasses expõem os endpoints.
    """

    def __init__(
        self,
        cfg,
        base_url: str,
        *,
        read_timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._cfg = cfg
        self._retries = max(0, int(getattr(cfg, "HTTP_RETRIES", 2)))
        self._backoff = float(getattr(cfg, "HTTP_BACKOFF_BASE", 0.4))

        headers = {
            "User-Agent": f"Oracle/1.0 ({getattr(cfg, 'MODEL_VERSION', 'unspecified')})",
            "Accept": "application/json",
        }
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=build_timeout(cfg, read_timeout),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -----------------------------
    # Baixo nível (request + retry)
    # -----------------------------
    def _request_with_retry(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        timeout: Optional[httpx.Timeout] = None,
    ) -> httpx.Response:
        """
        Faz uma requisição com tentativas adicionais em caso de erro transitório.
        Respeita Retry-After quando presente.
        """
        attempts = 1 + self._retries
        last_exc: Optional[BaseException] = None

        for i in range(attempts):
            try:
                kwargs: Dict[str, Any] = {"params": params, "json": json}
                if timeout is not None:
                    kwargs["timeout"] = timeout
                resp = self._client.request(method, path, **kwargs)

                if should_retry(resp.status_code, None) and i < attempts - 1:
                    logger.debug(f"{method} {path} -> {resp.status_code}, nova tentativa {i + 1}")
                    time.sleep(retry_delay(i, self._backoff, _parse_retry_after(resp)))
                    continue

                # Fora dos casos de retry, dispara erro se 4xx/5xx
                resp.raise_for_status()
                return resp

            except _TRANSIENT_ERRORS as e:
                last_exc = e
                if i < attempts - 1:
                    time.sleep(retry_delay(i, self._backoff, None))
                    continue
                raise

        if last_exc:
            raise last_exc
        raise RuntimeError("Falha desconhecida ao executar requisição HTTP.")
