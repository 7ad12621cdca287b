# oracle/worker/protocol.py
"""
Envelopes trocados entre o orquestrador e o worker de pontuação.

Entrada: WorkerInput (dataclass, precisa ser serializável por pickle para o
modo processo). Saída: zero ou mais ProgressMessage seguidos de exatamente um
ResultMessage ou ErrorMessage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, Field

from oracle.scoring.types import CandidateGame, UserGameSnapshot
from schemas.reco_output import RecoShelf, TasteProfile


@dataclass
class WorkerInput:
    user_games: List[UserGameSnapshot]
    candidates: List[CandidateGame]
    now: int
    current_hour: int
    embedding_coverage: float = 0.0
    dismissed_game_ids: List[str] = field(default_factory=list)
    taste_centroid: Optional[np.ndarray] = None
    mmr_lambda: float = 0.7
    mmr_limit: int = 80
    taste_clusters: int = 3


class ProgressMessage(BaseModel):
    type: Literal["progress"] = "progress"
    stage: str
    percent: int = Field(ge=0, le=100)


class ResultMessage(BaseModel):
    type: Literal["result"] = "result"
    taste_profile: TasteProfile
    shelves: List[RecoShelf] = Field(default_factory=list)
    compute_time_ms: int = 0


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


WorkerMessage = Union[ProgressMessage, ResultMessage, ErrorMessage]
