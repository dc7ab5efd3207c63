import pytest

from daycare_sync.etl import matcher
from daycare_sync.models import IdentitySignature


def sig(name, address=""):
    return IdentitySignature(normalized_name=name, normalized_address=address, normalized_phone="")


def test_similarity_edges():
    assert matcher.similarity("", "") == 1.0
    assert matcher.similarity("abc", "") == 0.0
    assert matcher.similarity("abcd", "abcf") == pytest.approx(0.75)
    assert matcher.address_similarity("", "") == 0.0


def test_near_identical_name_matches_on_name():
    result = matcher.score(sig("sunshine academy", "123 market street"), sig("sunshine academy", "123 market st"))
    name_sim, addr_sim, basis = result
    assert name_sim == 1.0
    assert addr_sim == pytest.approx(1 - 4 / 17)
    assert basis == "name"


def test_same_name_different_address_is_vetoed():
    assert matcher.score(sig("little stars", "1200 castro st"), sig("little stars", "4300 judah st")) is None


def test_same_name_without_address_still_matches():
    assert matcher.score(sig("little stars"), sig("little stars", "1200 castro st"))[2] == "name"


def test_moderate_name_needs_address():
    incoming = sig("kiddie kingdom too", "77 ocean ave")
    assert matcher.score(incoming, sig("kiddie kingdom", "77 ocean ave"))[2] == "name+address"
    assert matcher.score(sig("kiddie kingdom too"), sig("kiddie kingdom", "77 ocean ave")) is None
    assert matcher.score(incoming, sig("kiddie kingdom", "9 pine st")) is None


def test_tie_break_prefers_lowest_id_regardless_of_order():
    incoming = sig("rainbow room", "10 main st")
    candidates = [(5, sig("rainbow room", "10 main st")), (3, sig("rainbow room", "10 main st"))]
    forward = matcher.find_best_match(incoming, candidates)
    backward = matcher.find_best_match(incoming, list(reversed(candidates)))
    assert forward.existing_record_id == backward.existing_record_id == 3


def test_best_combined_similarity_wins():
    incoming = sig("rainbow room", "10 main st")
    candidates = [(1, sig("rainbow room", "12 main st")), (2, sig("rainbow room", "10 main st"))]
    assert matcher.find_best_match(incoming, candidates).existing_record_id == 2


def test_index_external_id_short_circuits():
    index = matcher.MatchIndex()
    index.add(1, sig("sunshine academy", "123 market st"), {"places": "pid-1"})
    index.add(2, sig("moonlight nursery", "1 pine st"))

    renamed = index.match(sig("totally new name"), source_id="places", external_id="pid-1")
    assert renamed.existing_record_id == 1
    assert renamed.basis == "external-id"

    assert index.match(sig("moonlight nursery", "1 pine st"), source_id="places", external_id="pid-2").existing_record_id == 2
    assert index.match(sig("unrelated"), source_id="places", external_id="pid-9") is None
    assert len(index) == 2
