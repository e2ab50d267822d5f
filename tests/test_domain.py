from orc_ingest.domain import Domain

from conftest import SPLIT_ELIM_WORDS


def test_domain_is_sorted_and_unique():
    domain = Domain(("foo", "bar", "foo", "baz"))

    assert domain.values == ("bar", "baz", "foo")
    assert len(domain) == 3
    assert domain.code_of("foo") == 2
    assert domain[0] == "bar"


def test_merge_all_of_partial_domains():
    partials = [Domain.from_values(SPLIT_ELIM_WORDS[i : i + 2]) for i in range(0, len(SPLIT_ELIM_WORDS), 2)]

    merged = Domain.merge_all(partials)

    assert list(merged) == ["bar", "cat", "dog", "eat", "foo", "zebra"]


def test_merge_is_order_independent():
    left = Domain(("zebra", "cat"))
    right = Domain(("dog", "cat"))

    assert left.merge(right) == right.merge(left)


def test_merge_all_of_nothing_is_empty():
    assert Domain.merge_all([]) == Domain()
