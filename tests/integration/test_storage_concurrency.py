"""
Concurrent use of one storage facade from many threads.

Saves are serialized by the facade, so parallel writers must neither fail
nor leave a fingerprint with a mix of rows from different saves.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import text

from printstore.models.fingerprint import Fingerprint
from printstore.models.range_set import RangeSet

from tests.helpers.facets import BuildResultFacet

WORKERS = 8


def test_concurrent_saves_of_distinct_ids(storage) -> None:
    def save(i: int) -> str:
        fp = Fingerprint(hash_string=f"hash-{i}", file_name=f"file-{i}.bin")
        fp.add_usages(f"job-{i}", range(1, i + 2))
        fp.facets.append(BuildResultFacet(passed=i))
        storage.save(fp)
        return fp.hash_string

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        ids = list(pool.map(save, range(WORKERS * 3)))

    assert storage.count() == len(ids)
    for i, fingerprint_id in enumerate(ids):
        loaded = storage.load(fingerprint_id)
        assert loaded.usages == {f"job-{i}": RangeSet.from_numbers(range(1, i + 2))}
        assert loaded.facets[0].passed == i


def test_concurrent_saves_of_same_id_leave_one_consistent_row_set(storage, engine) -> None:
    def save(i: int) -> None:
        fp = Fingerprint(hash_string="contended", file_name=f"writer-{i}")
        fp.add_usages(f"job-{i}", [i + 1, i + 2])
        fp.facets.append(BuildResultFacet(passed=i))
        storage.save(fp)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        list(pool.map(save, range(WORKERS * 2)))

    loaded = storage.load("contended")
    winner = int(loaded.file_name.split("-")[1])
    assert loaded.usages == {f"job-{winner}": RangeSet.from_numbers([winner + 1, winner + 2])}
    assert loaded.facets[0].passed == winner

    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM fingerprint")).scalar() == 1
        assert (
            conn.execute(
                text("SELECT COUNT(*) FROM fingerprint_job_build_relation")
            ).scalar()
            == 2
        )
        assert (
            conn.execute(text("SELECT COUNT(*) FROM fingerprint_facet_relation")).scalar()
            == 1
        )


def test_readers_never_see_partial_saves(storage) -> None:
    seed = Fingerprint(hash_string="watched", file_name="seed")
    seed.add_usages("job", [1, 2, 3])
    storage.save(seed)

    def write(i: int) -> None:
        fp = Fingerprint(hash_string="watched", file_name=f"w{i}")
        fp.add_usages("job", [1, 2, 3])
        storage.save(fp)

    def read(_: int) -> RangeSet:
        return storage.load("watched").get_range_set("job")

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        writes = [pool.submit(write, i) for i in range(20)]
        reads = [pool.submit(read, i) for i in range(20)]
        for future in writes:
            future.result()
        observed = [future.result() for future in reads]

    assert all(rs == RangeSet.from_numbers([1, 2, 3]) for rs in observed)
