# cli/main_oracle.py
"""
CLI do Motor de Recomendação - Oracle

Interface de linha de comando que executa uma rodada completa de recomendação
a partir de uma exportação da biblioteca (JSON) e imprime as prateleiras.

Funcionalidades:
- Carrega jogos, sessões e mudanças de status de um arquivo de exportação
- Opcionalmente grava o cache de navegação (browseGames) antes da rodada
- Worker em processo separado ou em thread (--worker)
- Dispensa jogos ("Not interested") e registra cliques no bandit
- Output em formato JSON ou texto legível

Exemplos de uso:
- python -m cli.main_oracle -i files/library_export.json
- python -m cli.main_oracle -i files/library_export.json --json
- python -m cli.main_oracle -i files/library_export.json --refresh --worker thread
- python -m cli.main_oracle --dismiss steam-620
- python -m cli.main_oracle --click hero
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from textwrap import indent
from typing import List, Optional

from pydantic import ValidationError

from oracle.config import OracleConfig
from oracle.context import AppContext
from oracle.orchestrator import RecoState
from schemas.library import LibraryExport
from schemas.reco_output import RecoShelf


# --------- Argumentos --------- #
def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="oracle-cli",
        description="Motor de Recomendação (CLI) — Oracle.",
    )

    # Entrada
    parser.add_argument(
        "-i", "--input",
        default=None,
        help="Caminho do JSON de exportação da biblioteca (games, sessions, statusChanges, browseGames).",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override do diretório de dados local (default: ORACLE_DATA_DIR ou ~/.oracle).",
    )

    # Execução
    parser.add_argument(
        "--worker",
        choices=["process", "thread"],
        default=None,
        help="Onde a pontuação roda: processo separado ou thread (default: WORKER_MODE).",
    )
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="Não gera embeddings faltantes (usa apenas os vetores em cache).",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignora o cache de resultados e recalcula.",
    )
    parser.add_argument(
        "--max-games",
        type=int,
        default=5,
        help="Jogos exibidos por prateleira no modo texto (default: 5).",
    )

    # Feedback
    parser.add_argument(
        "--dismiss",
        action="append",
        default=[],
        metavar="GAME_ID",
        help="Marca um jogo como 'Not interested' (pode repetir).",
    )
    parser.add_argument(
        "--undismiss",
        action="append",
        default=[],
        metavar="GAME_ID",
        help="Remove um jogo da lista de dispensados (pode repetir).",
    )
    parser.add_argument(
        "--click",
        action="append",
        default=[],
        metavar="SHELF_TYPE",
        help="Registra um clique em uma prateleira para o bandit (pode repetir).",
    )

    # Saída
    parser.add_argument(
        "--json",
        action="store_true",
        help="Imprime o perfil de gosto e as prateleiras completos em JSON.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log detalhado.",
    )

    return parser.parse_args(argv)


# --------- Entrada --------- #
def _load_export(path: str) -> LibraryExport:
    with open(path, "r", encoding="utf-8") as f:
        return LibraryExport.model_validate(json.load(f))


# --------- Saída "amigável" --------- #
def _print_pretty(state: RecoState, max_games: int) -> None:
    if state.status != "done":
        print(f"\n{state.error or 'Não foi possível recomendar jogos agora.'}")
        return

    profile = state.taste_profile
    if profile is not None and profile.total_games:
        print(f"\n🎮 Seu perfil: {profile.total_games} jogos, {profile.total_hours:.0f}h jogadas")
        if profile.top_genre:
            print(indent(f"gênero favorito: {profile.top_genre}", "  "))
        for cluster in profile.clusters:
            print(indent(f"cluster: {cluster.label} ({cluster.game_count} jogos)", "  "))

    if not state.shelves:
        print("\nNenhuma prateleira gerada (biblioteca vazia ou sem candidatos).")
        return

    for shelf in state.shelves:
        _print_shelf(shelf, max_games)

    print(
        f"\n{state.library_count} jogos na biblioteca, {state.candidate_count} candidatos, "
        f"{state.compute_time_ms} ms ({state.progress.stage})"
    )


def _print_shelf(shelf: RecoShelf, max_games: int) -> None:
    print(f"\n✨ {shelf.title}  [{shelf.type}]")
    if shelf.subtitle:
        print(indent(shelf.subtitle, "  "))
    for i, game in enumerate(shelf.games[:max_games], start=1):
        print(indent(f"#{i} — {game.title} ({game.game_id})  score: {game.score:.2f}", "  "))
        if game.reasons.explanation:
            print(indent(f"por que: {game.reasons.explanation}", "    "))
    hidden = len(shelf.games) - max_games
    if hidden > 0:
        print(indent(f"... e mais {hidden}", "  "))


def _state_to_json(state: RecoState) -> dict:
    return {
        "status": state.status,
        "error": state.error,
        "computeTimeMs": state.compute_time_ms,
        "lastComputed": state.last_computed,
        "libraryCount": state.library_count,
        "candidateCount": state.candidate_count,
        "tasteProfile": state.taste_profile.model_dump(by_alias=True, mode="json") if state.taste_profile else None,
        "shelves": [s.model_dump(by_alias=True, mode="json") for s in state.shelves],
    }


# --------- Main --------- #
def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    cfg = OracleConfig()
    overrides = {}
    if args.data_dir:
        overrides["DATA_DIR"] = args.data_dir
    if args.worker:
        overrides["WORKER_MODE"] = args.worker
    if overrides:
        cfg = replace(cfg, **overrides)

    export: Optional[LibraryExport] = None
    if args.input:
        if not Path(args.input).exists():
            print(f"[ERRO] Arquivo não encontrado: {args.input}", file=sys.stderr)
            return 2
        try:
            export = _load_export(args.input)
        except (ValidationError, json.JSONDecodeError) as e:
            print(f"[ERRO] Exportação inválida: {e}", file=sys.stderr)
            return 2

    with AppContext.from_config(cfg, with_steam=False) as ctx:
        # Feedback primeiro: afeta a rodada seguinte
        for game_id in args.dismiss:
            ctx.history.dismiss(game_id)
        for game_id in args.undismiss:
            ctx.history.undismiss(game_id)
        for shelf_type in args.click:
            ctx.bandit.record_click(shelf_type)
        if args.dismiss or args.undismiss:
            ctx.orchestrator.refresh()

        if export is None:
            if not (args.dismiss or args.undismiss or args.click):
                print("[ERRO] Informe --input ou uma ação de feedback.", file=sys.stderr)
                return 2
            print(f"Feedback registrado ({ctx.history.dismissed_count()} jogos dispensados).")
            return 0

        if export.browse_games:
            ctx.browse_cache.save(export.browse_games)
        if args.refresh:
            ctx.orchestrator.refresh()

        try:
            state = ctx.orchestrator.compute_export(export, generate_embeddings=not args.no_embeddings)
        except KeyboardInterrupt:
            ctx.orchestrator.reset()
            print("\nRodada cancelada.", file=sys.stderr)
            return 130

        # Cada prateleira exibida conta como impressão para o bandit
        shown: List[str] = [s.type for s in state.shelves]
        for shelf_type in shown:
            ctx.bandit.record_impression(shelf_type)

        if args.json:
            print(json.dumps(_state_to_json(state), ensure_ascii=False, indent=2))
        else:
            _print_pretty(state, args.max_games)

        return 0 if state.status == "done" else 1


if __name__ == "__main__":
    raise SystemExit(main())
