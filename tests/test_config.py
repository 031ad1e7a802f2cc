import pytest

from shared.exceptions import InvalidConfig
from shared.models.config import RAGSettings


def test_settings_defaults(helper_config, monkeypatch):
    for key in ["CHUNK_SIZE", "CHUNK_OVERLAP", "RETRIEVAL_TOP_K", "HISTORY_WINDOW", "SUMMARY_MAX_CHUNKS"]:
        monkeypatch.delenv(key, raising=False)
    settings = RAGSettings.from_config(helper_config)
    assert (settings.chunk_size, settings.chunk_overlap) == (1000, 200)
    assert settings.top_k == 5
    assert settings.history_window == 6
    assert settings.summary_max_chunks == 40
    assert settings.session_title_max_chars == 30


def test_settings_from_env(helper_config, monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "500")
    monkeypatch.setenv("RETRIEVAL_MIN_SCORE", "0.25")
    settings = RAGSettings.from_config(helper_config)
    assert settings.chunk_size == 500
    assert settings.min_score == 0.25


def test_invalid_number(helper_config, monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "lots")
    with pytest.raises(ValueError):
        RAGSettings.from_config(helper_config)


def test_list_values(helper_config, monkeypatch):
    monkeypatch.setenv("SOME_LIST", "[a, b ,c]")
    assert helper_config.get_list_val("SOME_LIST") == ["a", "b", "c"]
    monkeypatch.setenv("SOME_LIST", "a,b")
    with pytest.raises(ValueError):
        helper_config.get_list_val("SOME_LIST")
    assert helper_config.get_list_val("MISSING_LIST", default=["x"]) == ["x"]


def test_bool_and_missing_values(helper_config, monkeypatch):
    monkeypatch.setenv("FLAG", "yes")
    assert helper_config.get_bool_val("flag") is True
    monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
    with pytest.raises(ValueError):
        helper_config.get_string_val("NOT_SET_ANYWHERE")


def test_number_below_minimum_is_rejected(helper_config, monkeypatch):
    monkeypatch.setenv("STREAM_QUEUE_SIZE", "0")
    with pytest.raises(InvalidConfig):
        RAGSettings.from_config(helper_config)


def test_bool_words(helper_config, monkeypatch):
    monkeypatch.setenv("FLAG", "off")
    assert helper_config.get_bool_val("FLAG") is False
    monkeypatch.setenv("FLAG", "maybe")
    with pytest.raises(InvalidConfig):
        helper_config.get_bool_val("FLAG")


def test_blank_value_counts_as_unset(helper_config, monkeypatch):
    monkeypatch.setenv("BLANK_VALUE", "   ")
    assert helper_config.get_string_val("BLANK_VALUE", default="fallback") == "fallback"
    monkeypatch.setenv("NUMBERS", "[1, 2,,3]")
    assert helper_config.get_list_val("NUMBERS", element_type=int) == [1, 2, 3]
