from oracle.embeddings.text import catalog_embedding_id, catalog_text, djb2_hash, library_text
from schemas.catalog_entry import CatalogEntry

from tests.factories import make_game


def test_djb2_is_stable_and_base36():
    assert djb2_hash("") == "45h"  # 5381
    assert djb2_hash("abc") == djb2_hash("abc")
    assert djb2_hash("abc") != djb2_hash("abd")
    assert set(djb2_hash("Hades. genres: Action")) <= set("-0123456789abcdefghijklmnopqrstuvwxyz")


def test_djb2_wraps_to_signed_32_bits():
    value = int(djb2_hash("a much longer text that overflows the 32 bit accumulator"), 36)
    assert -(2 ** 31) <= value < 2 ** 31


def test_library_text_includes_notes_and_truncates_summary():
    game = make_game(
        "steam-1",
        "Hades",
        genres=["Action", "Roguelike"],
        themes=["Mythology"],
        developer="Supergiant",
        summary="x" * 400,
        user_notes="loved the dialogue",
    )
    text = library_text(game)
    assert text.startswith("Hades. genres: Action, Roguelike. themes: Mythology. by Supergiant. ")
    assert "x" * 300 in text and "x" * 301 not in text
    assert text.endswith("player notes: loved the dialogue")


def test_library_text_falls_back_to_description():
    game = make_game("steam-1", "Hades", genres=[], description="A rogue-like dungeon crawler")
    assert library_text(game) == "Hades. A rogue-like dungeon crawler"


def test_catalog_text_has_no_player_notes():
    entry = CatalogEntry(app_id=620, name="Portal 2", genres=["Puzzle"], developer="Valve", short_description="Think with portals")
    assert catalog_text(entry) == "Portal 2. genres: Puzzle. by Valve. Think with portals"
    assert catalog_embedding_id(entry.app_id) == "steam-620"
