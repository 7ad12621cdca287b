# oracle/bandit.py
"""
Bandit de prateleiras (Thompson Sampling, Beta-Bernoulli).

Responsável por:
- Guardar um braço por tipo de prateleira {alpha, beta, impressions, clicks}.
- Reordenar as prateleiras amostrando Beta(alpha, beta) por braço; a "hero"
  fica sempre em primeiro e listas com até 2 prateleiras não mudam.
- Persistir cada braço como uma linha na coleção SHELF_BANDIT a cada recompensa.

Observações:
- record_impression devolve um token; record_click(key, token) só desfaz o
  beta da impressão se aquele token ainda estiver aberto (um clique por token).
- Sem token, record_click mantém a regra histórica: beta - 1 quando beta > 1.
- Só os MAX_OPEN_TOKENS tokens mais recentes ficam abertos; os antigos expiram.
- Amostragem via Generator.beta do numpy.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, TypeVar

import numpy as np

from oracle.errors import StorageWriteFailed
from oracle.storage.keyed_store import KeyedStore
from oracle.storage.schema import SHELF_BANDIT

logger = logging.getLogger(__name__)

HERO_SHELF = "hero"
MAX_OPEN_TOKENS = 1000  # impressões sem clique além disso descartam o token mais antigo

S = TypeVar("S")


@dataclass
class ArmState:
    alpha: float = 1.0
    beta: float = 1.0
    impressions: int = 0
    clicks: int = 0

    @classmethod
    def from_dict(cls, data) -> "ArmState":
        if not isinstance(data, dict):
            return cls()
        return cls(
            alpha=max(1.0, float(data.get("alpha", 1.0))),
            beta=max(1.0, float(data.get("beta", 1.0))),
            impressions=int(data.get("impressions", 0) or 0),
            clicks=int(data.get("clicks", 0) or 0),
        )


class ShelfBandit:
    def __init__(
        self,
        store: Optional[KeyedStore],
        rng: Optional[np.random.Generator] = None,
        max_open_tokens: int = MAX_OPEN_TOKENS,
    ) -> None:
        self.store = store
        self.rng = rng or np.random.default_rng()
        self._lock = threading.RLock()
        self._arms: Dict[str, ArmState] = {}
        self.max_open_tokens = max(1, int(max_open_tokens))
        self._open_tokens: "OrderedDict[str, str]" = OrderedDict()  # token -> shelf key
        self._load()

    @classmethod
    def from_config(cls, cfg, store: Optional[KeyedStore]) -> "ShelfBandit":
        # Semente só quando explicitamente configurada; a exploração depende da aleatoriedade
        seed = getattr(cfg, "BANDIT_SEED", None)
        return cls(
            store,
            rng=np.random.default_rng(seed),
            max_open_tokens=getattr(cfg, "BANDIT_MAX_OPEN_TOKENS", MAX_OPEN_TOKENS),
        )

    # ---------- Persistência ----------
    def _load(self) -> None:
        if self.store is None:
            return
        for row in self.store.get_all(SHELF_BANDIT, include_blob=False):
            self._arms[row.key] = ArmState.from_dict(row.value)
        if self._arms:
            logger.debug(f"Bandit: {len(self._arms)} braços carregados")

    def _save(self, key: str) -> None:
        if self.store is None:
            return
        try:
            self.store.put(SHELF_BANDIT, key, asdict(self._arms[key]))
        except StorageWriteFailed as e:
            logger.warning(f"Bandit: falha ao persistir braço {key!r}, seguindo em memória: {e}")

    def _arm(self, key: str) -> ArmState:
        arm = self._arms.get(key)
        if arm is None:
            arm = self._arms[key] = ArmState()
        return arm

    # ---------- Recompensas ----------
    def record_reward(self, key: str, reward: int) -> None:
        """reward 1 = clique/engajamento, 0 = impressão sem clique."""
        with self._lock:
            arm = self._arm(key)
            arm.impressions += 1
            if reward == 1:
                arm.alpha += 1
                arm.clicks += 1
            else:
                arm.beta += 1
            self._save(key)

    def record_impression(self, key: str) -> str:
        """Registra uma impressão e devolve o token que pareia com um clique."""
        token = uuid.uuid4().hex
        with self._lock:
            self.record_reward(key, 0)
            self._open_tokens[token] = key
            while len(self._open_tokens) > self.max_open_tokens:
                self._open_tokens.popitem(last=False)
        return token

    def record_click(self, key: str, impression_token: Optional[str] = None) -> None:
        with self._lock:
            arm = self._arm(key)
            arm.alpha += 1
            arm.clicks += 1
            if impression_token is None:
                undo_impression = True
            else:
                undo_impression = self._open_tokens.get(impression_token) == key
                if undo_impression:
                    del self._open_tokens[impression_token]
            if undo_impression and arm.beta > 1:
                arm.beta -= 1
            self._save(key)

    # ---------- Amostragem ----------
    def sample(self, key: str) -> float:
        with self._lock:
            arm = self._arm(key)
            alpha, beta = arm.alpha, arm.beta
        return float(self.rng.beta(alpha, beta))

    def reorder_shelves(self, shelves: Sequence[S]) -> List[S]:
        if len(shelves) <= 2:
            return list(shelves)
        hero = next((s for s in shelves if s.type == HERO_SHELF), None)
        rest = [(s, self.sample(s.type)) for s in shelves if s.type != HERO_SHELF]
        rest.sort(key=lambda pair: pair[1], reverse=True)
        ordered = [s for s, _ in rest]
        return [hero, *ordered] if hero is not None else ordered

    # ---------- Consulta / manutenção ----------
    def get_arm(self, key: str) -> ArmState:
        with self._lock:
            return ArmState(**asdict(self._arm(key)))

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                key: {
                    "alpha": arm.alpha,
                    "beta": arm.beta,
                    "impressions": arm.impressions,
                    "clicks": arm.clicks,
                    "ctr": arm.clicks / arm.impressions if arm.impressions > 0 else 0.0,
                }
                for key, arm in self._arms.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._arms.clear()
            self._open_tokens.clear()
            if self.store is not None:
                self.store.clear(SHELF_BANDIT)
        logger.info("Bandit reiniciado")
