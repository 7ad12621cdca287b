# oracle/recommendation_logger.py
"""
Registro das rodadas de recomendação em JSONL.
Cada linha descreve uma rodada (contagens, cobertura de embeddings, prateleiras
geradas e tempo de cálculo) para monitoramento operacional.
"""

import csv
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from schemas.reco_output import RecoShelf

logger = logging.getLogger(__name__)


@dataclass
class ShelfSummary:
    """Resumo de uma prateleira entregue."""
    type: str
    title: str
    game_count: int
    top_game: Optional[str] = None
    top_score: Optional[float] = None


@dataclass
class ComputeRun:
    """Uma rodada completa do orquestrador."""
    run_id: str
    timestamp: str
    library_count: int
    candidate_count: int
    source_counts: Dict[str, int]
    embedding_coverage: float
    worker_mode: str
    compute_time_ms: int
    shelves: List[ShelfSummary] = field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None


class RecommendationLogger:
    """Logger de rodadas de recomendação (arquivo JSONL)."""

    def __init__(self, log_path: str):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, cfg) -> Optional["RecommendationLogger"]:
        if not getattr(cfg, "LOG_COMPUTE_RUNS", True):
            return None
        return cls(cfg.compute_log_path)

    def log_compute_run(
        self,
        library_count: int,
        candidate_count: int,
        shelves: Sequence[RecoShelf],
        compute_time_ms: int,
        source_counts: Optional[Dict[str, int]] = None,
        embedding_coverage: float = 0.0,
        worker_mode: str = "process",
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> str:
        """
        Registra uma rodada.

        Returns:
            str: ID da rodada registrada
        """
        run = ComputeRun(
            run_id=str(uuid.uuid4()),
            timestamp=datetime.now().isoformat(),
            library_count=library_count,
            candidate_count=candidate_count,
            source_counts=dict(source_counts or {}),
            embedding_coverage=round(float(embedding_coverage), 4),
            worker_mode=worker_mode,
            compute_time_ms=int(compute_time_ms),
            shelves=[
                ShelfSummary(
                    type=s.type,
                    title=s.title,
                    game_count=len(s.games),
                    top_game=s.games[0].title if s.games else None,
                    top_score=round(s.games[0].score, 4) if s.games else None,
                )
                for s in shelves
            ],
            success=success,
            error_message=error_message,
        )
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(run), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning(f"Falha ao gravar log de rodada: {e}")
        return run.run_id

    def get_history(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Recupera as últimas rodadas registradas."""
        if not self.log_path.exists():
            return []
        runs = []
        with open(self.log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    runs.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Linha inválida no log de rodadas; ignorando")
        return runs[-limit:] if limit else runs

    def export_for_analysis(self, output_file: str) -> Optional[Path]:
        """Exporta as rodadas para CSV."""
        runs = self.get_history(limit=0)
        if not runs:
            logger.info("Nenhuma rodada para exportar")
            return None

        output_path = Path(output_file)
        with open(output_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow([
                "run_id", "timestamp", "success", "compute_time_ms",
                "library_count", "candidate_count", "embedding_coverage",
                "shelf_count", "hero_title", "hero_score",
            ])
            for run in runs:
                shelves = run.get("shelves") or []
                hero = next((s for s in shelves if s.get("type") == "hero"), {})
                writer.writerow([
                    run["run_id"],
                    run["timestamp"],
                    run["success"],
                    run["compute_time_ms"],
                    run["library_count"],
                    run["candidate_count"],
                    run["embedding_coverage"],
                    len(shelves),
                    hero.get("top_game", ""),
                    hero.get("top_score", ""),
                ])

        logger.info(f"Rodadas exportadas para {output_path}")
        return output_path
