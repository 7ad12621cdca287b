import numpy as np
import pytest

from oracle.index.ann_index import AnnIndex

from tests.factories import DIM, unit


@pytest.fixture
def ann(tmp_path):
    return AnnIndex(str(tmp_path / "ann.faiss"), str(tmp_path / "ann.json"), dim=DIM, backend="numpy")


def _populate(ann):
    ann.add_vectors(
        [
            ("a", unit(1, 0)),
            ("b", unit(1, 0.2)),
            ("c", unit(0, 1)),
            ("d", unit(-1, 0)),
        ]
    )


def test_empty_index_is_not_ready(ann):
    assert not ann.is_ready
    assert ann.query(unit(1), 5) == []
    assert ann.query_batch([("a", unit(1))], 3) == {}
    assert ann.status() == {"ready": False, "vectorCount": 0, "dims": DIM}


def test_query_orders_by_cosine_distance(ann):
    _populate(ann)
    result = ann.query(unit(1, 0), 10)

    assert [gid for gid, _ in result] == ["a", "b", "c", "d"]
    assert result[0][1] == pytest.approx(0.0, abs=1e-6)
    assert result[-1][1] == pytest.approx(2.0, abs=1e-6)


def test_k_is_clamped_to_size(ann):
    _populate(ann)
    assert len(ann.query(unit(1), 2)) == 2
    assert len(ann.query(unit(1), 100)) == 4


def test_wrong_dimension_is_ignored(ann):
    assert ann.add_vectors([("bad", np.ones(DIM + 1, dtype=np.float32))]) == 0
    _populate(ann)
    assert ann.query(np.ones(3, dtype=np.float32), 5) == []


def test_existing_id_is_updated_not_added(ann):
    _populate(ann)
    assert ann.add_vectors([("a", unit(0, 1))]) == 0
    assert ann.vector_count == 4
    nearest = ann.query(unit(0, 1), 2)
    assert {gid for gid, _ in nearest} == {"a", "c"}


def test_query_batch_excludes_self(ann):
    _populate(ann)
    result = ann.query_batch([("a", unit(1, 0)), ("c", unit(0, 1))], 2)

    assert [gid for gid, _ in result["a"]] == ["b", "c"]
    assert "c" not in [gid for gid, _ in result["c"]]
    assert len(result["c"]) == 2


def test_save_and_load_roundtrip(ann, tmp_path):
    _populate(ann)
    assert ann.save()

    reloaded = AnnIndex(str(tmp_path / "ann.faiss"), str(tmp_path / "ann.json"), dim=DIM, backend="numpy")
    assert reloaded.load()
    assert reloaded.vector_count == 4
    assert reloaded.query(unit(0, 1), 1)[0][0] == "c"


def test_load_rejects_mismatched_dimensions(ann, tmp_path):
    _populate(ann)
    ann.save()

    other = AnnIndex(str(tmp_path / "ann.faiss"), str(tmp_path / "ann.json"), dim=DIM * 2, backend="numpy")
    assert not other.load()
    assert not other.is_ready


def test_clear_removes_files(ann, tmp_path):
    _populate(ann)
    ann.save()
    ann.clear()

    assert ann.vector_count == 0
    assert not (tmp_path / "ann.json").exists()
    assert not ann.load()


def test_build_progress(ann):
    ann.set_build_progress(3, 10)
    assert ann.is_building
    assert ann.build_progress == (3, 10)
    ann.finish_build()
    assert not ann.is_building
