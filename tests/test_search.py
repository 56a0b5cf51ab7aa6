from __future__ import annotations

import pytest

from tinymem.search import jaro_winkler, name_score, rank_names, score


def test_word_overlap_outranks_unrelated() -> None:
    relevant = score("postgres_connection_pool_config", "postgres pool")
    unrelated = score("react_useeffect_async_cleanup", "postgres pool")

    assert relevant > unrelated
    assert relevant == pytest.approx(0.9)


def test_verbatim_match_scores_highest() -> None:
    text = "notes about the auth middleware"
    result = score(text, "auth middleware")

    assert result == pytest.approx(0.9 + min(0.1, len("auth middleware") / len(text)))
    assert result > score(text, "auth pipeline")


def test_verbatim_bonus_capped() -> None:
    assert score("deploy", "deploy") == pytest.approx(1.0)


def test_case_insensitive() -> None:
    assert score("Deploy Checklist", "deploy CHECKLIST") == score("deploy checklist", "deploy checklist")


def test_partial_word_overlap() -> None:
    assert score("jwt refresh flow", "jwt rotation policy") == pytest.approx(0.5 + 0.4 / 3)


def test_fuzzy_fallback_is_halved() -> None:
    result = score("abcdefgh", "xyz")
    assert 0.0 <= result <= 0.5
    assert result == pytest.approx(jaro_winkler("abcdefgh", "xyz") * 0.5)


def test_fuzzy_fallback_uses_head_of_text() -> None:
    head = "a" * 100
    assert score(head + "tail", "qqq") == pytest.approx(jaro_winkler(head, "qqq") * 0.5)


def test_empty_query_scores_zero() -> None:
    assert score("anything", "   ") == 0.0


def test_name_score_substring_bonus_capped() -> None:
    assert name_score("auth", "auth", 0.3) == 1.0
    with_bonus = name_score("auth_jwt_refresh", "jwt", 0.2)
    without = jaro_winkler("auth_jwt_refresh", "jwt")
    assert with_bonus == pytest.approx(min(1.0, without + 0.2))


def test_rank_names_without_floor_keeps_everything_up_to_limit() -> None:
    names = ["alpha", "beta", "gamma", "delta"]
    ranked = rank_names(names, "zzz", 3, boost=0.2)

    assert len(ranked) == 3
    scores = [value for _, value in ranked]
    assert scores == sorted(scores, reverse=True)


def test_rank_names_floor_filters() -> None:
    ranked = rank_names(["user-auth", "billing"], "auth", 10, boost=0.3, floor=0.4)
    assert [name for name, _ in ranked][0] == "user-auth"
    assert all(value > 0.4 for _, value in ranked)


def test_rank_names_zero_limit() -> None:
    assert rank_names(["a"], "a", 0, boost=0.2) == []
