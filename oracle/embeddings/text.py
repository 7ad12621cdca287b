# oracle/embeddings/text.py
"""
Texto canônico e hash dos embeddings.

Responsável por:
- Montar o texto canônico de um jogo da biblioteca (nível 1, inclui notas do jogador).
- Montar o texto canônico de uma entrada do catálogo (nível 2, só metadados).
- Calcular o hash djb2 (32 bits, base 36) usado para detectar texto alterado.

Observações:
- O hash precisa ser estável entre execuções: é comparado com o textHash salvo.
- IDs do catálogo seguem o formato "steam-{appId}".
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    sign = "-" if n < 0 else ""
    n = abs(n)
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
    return sign + "".join(reversed(digits))


def djb2_hash(text: str) -> str:
    """
    djb2 sobre unidades UTF-16, com aritmética de inteiro 32 bits com sinal.
    Retorna a representação em base 36 (pode ter sinal negativo).
    """
    h = 5381
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) + h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(h)


def _get(item: Any, *names: str) -> Any:
    """Lê o primeiro atributo/chave presente (aceita dicts e objetos)."""
    for name in names:
        if isinstance(item, Mapping):
            if item.get(name) is not None:
                return item.get(name)
        else:
            value = getattr(item, name, None)
            if value is not None:
                return value
    return None


def _join_list(values: Optional[Sequence[str]]) -> str:
    return ", ".join(str(v) for v in (values or []))


def library_text(game: Any) -> str:
    """Texto do nível biblioteca: título, gêneros, temas, estúdio, resumo e notas."""
    parts = [str(_get(game, "title", "name") or "")]
    genres = _get(game, "genres", "genre")
    themes = _get(game, "themes")
    developer = _get(game, "developer")
    summary = _get(game, "summary")
    description = _get(game, "description")
    notes = _get(game, "user_notes", "userNotes")

    if genres:
        parts.append(f"genres: {_join_list(genres)}")
    if themes:
        parts.append(f"themes: {_join_list(themes)}")
    if developer:
        parts.append(f"by {developer}")
    if summary:
        parts.append(str(summary)[:300])
    elif description:
        parts.append(str(description)[:300])
    if notes:
        parts.append(f"player notes: {str(notes)[:200]}")
    return ". ".join(parts)


def catalog_text(entry: Any) -> str:
    """Texto do nível catálogo: igual ao da biblioteca, sem notas e com a descrição curta."""
    parts = [str(_get(entry, "name", "title") or "")]
    genres = _get(entry, "genres")
    themes = _get(entry, "themes")
    developer = _get(entry, "developer")
    short = _get(entry, "short_description", "shortDescription")

    if genres:
        parts.append(f"genres: {_join_list(genres)}")
    if themes:
        parts.append(f"themes: {_join_list(themes)}")
    if developer:
        parts.append(f"by {developer}")
    if short:
        parts.append(str(short)[:300])
    return ". ".join(parts)


def catalog_embedding_id(app_id: int | str) -> str:
    return f"steam-{app_id}"
