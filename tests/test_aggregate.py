from __future__ import annotations

import random

import pytest

from git_tally.analysis_aggregate import aggregate, default_worker_count, fold, merge, merge_all, split_chunks
from git_tally.analysis_filters import Filters
from git_tally.identity import MailmapRuleSet, parse_mailmap
from git_tally.models import Aggregate, CommitRecord, FileDiff, Identity, Stats

MAILMAP = MailmapRuleSet(rules=tuple(parse_mailmap("Alice Adams <alice@x.com> <al@old.com>\n")))


def _records(n: int, seed: int = 7) -> list[CommitRecord]:
    rng = random.Random(seed)
    people = [("Alice Adams", "alice@x.com"), ("al", "al@old.com"), ("Bob", "bob@x.com"), ("Carol", "carol@x.com")]
    paths = ["README.md", "src/a.py", "src/b.py", "src/pkg/c.py", "docs/guide.md", "tests/test_a.py"]
    out: list[CommitRecord] = []
    for i in range(n):
        name, email = rng.choice(people)
        touched = rng.sample(paths, rng.randint(0, 3))
        out.append(
            CommitRecord(
                hash=f"{i:040x}",
                name=name,
                email=email,
                timestamp=1_700_000_000 + i * 3600 + rng.randint(0, 100),
                is_merge=rng.random() < 0.1,
                diffs=tuple(FileDiff(p, rng.randint(0, 50), rng.randint(0, 20)) for p in touched),
            )
        )
    return out


@pytest.mark.parametrize("workers", [2, 3, 4, 8, 64, 500])
def test_worker_count_does_not_change_result(workers: int) -> None:
    records = _records(200)
    for filters in (Filters(), Filters(include_merges=True), Filters(pathspecs=("src",), authors=("alice",))):
        baseline = aggregate(records, MAILMAP, filters, worker_count=1)
        assert aggregate(records, MAILMAP, filters, worker_count=workers) == baseline


def test_aggregate_accepts_a_lazy_stream() -> None:
    records = _records(50)
    assert aggregate(iter(records), MAILMAP, Filters(), worker_count=4) == fold(records, MAILMAP, Filters())


def test_mailmapped_identities_merge_into_one_entry() -> None:
    records = [
        CommitRecord("1" * 40, "Alice Adams", "alice@x.com", 100, diffs=(FileDiff("a.txt", 1, 0),)),
        CommitRecord("2" * 40, "al", "al@old.com", 200, diffs=(FileDiff("b.txt", 2, 1),)),
    ]
    agg = aggregate(records, MAILMAP, Filters(), worker_count=2)
    assert list(agg.contributors) == [Identity("Alice Adams", "alice@x.com")]
    st = agg.contributors[Identity("Alice Adams", "alice@x.com")]
    assert (st.commits, st.lines_added, st.lines_removed, st.file_count) == (2, 3, 1, 2)
    assert (st.first_commit_time, st.last_commit_time) == (100, 200)


def test_distinct_files_are_not_double_counted_across_chunks() -> None:
    records = [
        CommitRecord(str(i) * 40, "Bob", "bob@x.com", 100 + i, diffs=(FileDiff("same.txt", 1, 0),)) for i in range(1, 5)
    ]
    agg = aggregate(records, None, Filters(), worker_count=4)
    st = agg.contributors[Identity("Bob", "bob@x.com")]
    assert st.commits == 4
    assert st.file_count == 1
    assert agg.paths["same.txt"].commits == 4


def test_excluded_merges_leave_no_trace() -> None:
    records = [
        CommitRecord("1" * 40, "Alice Adams", "alice@x.com", 100, diffs=(FileDiff("a.txt", 1, 0),)),
        CommitRecord("2" * 40, "Bob", "bob@x.com", 200, is_merge=True, diffs=(FileDiff("m.txt", 5, 5),)),
    ]
    agg = aggregate(records, None, Filters(include_merges=False))
    assert Identity("Bob", "bob@x.com") not in agg.contributors
    assert "m.txt" not in agg.paths

    agg = aggregate(records, None, Filters(include_merges=True))
    assert agg.contributors[Identity("Bob", "bob@x.com")].commits == 1
    assert agg.paths["m.txt"].lines == 10


def test_paths_without_surviving_commits_are_absent() -> None:
    records = [CommitRecord("1" * 40, "Bob", "bob@x.com", 100, diffs=(FileDiff("a.txt", 1, 0),))]
    agg = aggregate(records, None, Filters(authors=("alice",)))
    assert agg == Aggregate()


def test_duplicate_path_in_one_commit_is_summed() -> None:
    rec = CommitRecord("1" * 40, "Bob", "bob@x.com", 100, diffs=(FileDiff("a.txt", 1, 2), FileDiff("a.txt", 3, 4)))
    agg = fold([rec], None)
    assert agg.paths["a.txt"] == Stats(commits=1, lines_added=4, lines_removed=6, paths=frozenset({"a.txt"}), first_commit_time=100, last_commit_time=100)


def test_merge_is_associative_and_commutative_with_identity() -> None:
    records = _records(90, seed=3)
    a, b, c = (fold(chunk, MAILMAP) for chunk in split_chunks(records, 3))
    assert merge(merge(a, b), c) == merge(a, merge(b, c))
    assert merge(a, b) == merge(b, a)
    assert merge(a, Aggregate()) == a
    assert merge_all([c, a, b]) == fold(records, MAILMAP)


def test_merge_does_not_mutate_inputs() -> None:
    records = _records(20)
    a = fold(records[:10], None)
    snapshot = Aggregate(contributors=dict(a.contributors), paths=dict(a.paths))
    merge(a, fold(records[10:], None))
    assert a == snapshot


def test_split_chunks_is_contiguous_and_balanced() -> None:
    items = list(range(10))
    chunks = split_chunks(items, 3)
    assert chunks == [[0, 1, 2, 3], [4, 5, 6], [7, 8, 9]]
    assert split_chunks(items, 20) == [[i] for i in items]
    assert split_chunks([], 4) == []
    assert split_chunks(items, 0) == [items]


def test_default_worker_count() -> None:
    assert default_worker_count(0, cpu_count=8) == 1
    assert default_worker_count(9_999, cpu_count=8) == 1
    assert default_worker_count(25_000, cpu_count=8) == 3
    assert default_worker_count(10_000_000, cpu_count=8) == 15
    assert default_worker_count(10_000_000, cpu_count=1) == 1


@pytest.mark.parametrize(
    "mailmap,variant",
    [
        ("Proper Name <a@x.com>\n", ("proper name", "a@x.com")),
        ("Alice <alice@x.com> <ALICE@X.COM>\n", ("Alice", "ALICE@X.COM")),
    ],
)
def test_case_variant_aliases_collapse_into_the_canonical_identity(mailmap: str, variant: tuple[str, str]) -> None:
    rs = MailmapRuleSet(rules=tuple(parse_mailmap(mailmap)))
    rule = rs.rules[0]
    canonical = Identity(rule.proper_name or variant[0], rule.proper_email or rule.commit_email)
    records = [
        CommitRecord("1" * 40, canonical.name, canonical.email, 100, diffs=(FileDiff("a.txt", 1, 0),)),
        CommitRecord("2" * 40, variant[0], variant[1], 200, diffs=(FileDiff("b.txt", 1, 0),)),
    ]
    agg = aggregate(records, rs, Filters(), worker_count=2)
    assert list(agg.contributors) == [canonical]
    assert agg.contributors[canonical].commits == 2


def _renaming_history() -> list[CommitRecord]:
    return [
        CommitRecord("1" * 40, "Alice", "alice@x.com", 100, diffs=(FileDiff("a.txt", 3, 0), FileDiff("gone.txt", 1, 0))),
        CommitRecord("2" * 40, "Bob", "bob@x.com", 200, diffs=(FileDiff("a.txt", 1, 1),)),
        CommitRecord("3" * 40, "Bob", "bob@x.com", 300, diffs=(FileDiff("b.txt", 0, 0, old_path="a.txt"),)),
        CommitRecord("4" * 40, "Carol", "carol@x.com", 400, diffs=(FileDiff("gone.txt", 0, 1, deleted=True),)),
        CommitRecord("5" * 40, "Carol", "carol@x.com", 500, diffs=(FileDiff("b.txt", 2, 0),)),
    ]


def test_renames_follow_the_file_and_deletions_drop_it() -> None:
    agg = fold(_renaming_history(), None)
    assert set(agg.paths) == {"b.txt"}
    st = agg.paths["b.txt"]
    assert (st.commits, st.lines_added, st.lines_removed) == (4, 6, 1)
    assert st.paths == frozenset({"b.txt"})
    assert agg.contributors[Identity("Alice", "alice@x.com")].paths == frozenset({"b.txt", "gone.txt"})
    assert agg.contributors[Identity("Carol", "carol@x.com")].file_count == 2


@pytest.mark.parametrize("workers", [2, 3, 5])
def test_renames_across_chunk_boundaries_match_sequential_fold(workers: int) -> None:
    records = _renaming_history()
    assert aggregate(records, None, Filters(), worker_count=workers) == fold(records, None, Filters())
    a, b = fold(records[:2], None), fold(records[2:], None)
    assert merge(a, b) == fold(records, None)


def test_renames_by_filtered_out_commits_still_move_paths() -> None:
    agg = fold(_renaming_history(), None, Filters(authors=("alice",)))
    assert set(agg.paths) == {"b.txt"}
    assert agg.paths["b.txt"].commits == 1
    assert agg.contributors[Identity("Alice", "alice@x.com")].paths == frozenset({"b.txt", "gone.txt"})
