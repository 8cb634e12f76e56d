import pytest
from types import MappingProxyType

from dinnerbot.models.recommendation import RequestType
from dinnerbot.services.intent_classifier import (
    IntentClassifier,
    classify,
    is_recommendation_request,
)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("今日はあっさりしたものが食べたい", RequestType.LIGHT),
        ("がっつり系でお願い", RequestType.HEARTY),
        ("前回と違うものがいい", RequestType.DIFFERENT),
        ("他のおすすめある？", RequestType.DIVERSE),
        ("おすすめ教えて", RequestType.GENERAL),
        ("Something LIGHT please", RequestType.LIGHT),
    ],
)
def test_classify_keywords(message, expected):
    req = classify(message)
    assert req.type is expected
    assert req.original_message == message


def test_light_wins_over_diverse():
    # "他の" is a diverse keyword, but light is checked first
    assert classify("あっさりした他の料理").type is RequestType.LIGHT


def test_hearty_wins_over_different():
    assert classify("前回と違うがっつり料理").type is RequestType.HEARTY


def test_empty_and_none_are_general():
    assert classify("").type is RequestType.GENERAL
    assert classify(None).type is RequestType.GENERAL
    assert classify(None).original_message == ""


def test_custom_table_priority_follows_mapping_order():
    table = MappingProxyType(
        {
            RequestType.DIVERSE: ("x",),
            RequestType.LIGHT: ("x", "y"),
        }
    )
    clf = IntentClassifier(keywords=table)
    assert clf.classify("x y").type is RequestType.DIVERSE
    assert clf.classify("y").type is RequestType.LIGHT


def test_is_recommendation_request():
    assert is_recommendation_request("おすすめ")
    assert is_recommendation_request("今日の夕食を提案して")
    assert is_recommendation_request("さっぱりしたい")
    assert not is_recommendation_request("こんにちは")
    assert not is_recommendation_request("")


def test_explain_reports_keyword():
    out = IntentClassifier().explain("がっつり食べたい")
    assert out == {
        "intent": "hearty",
        "keyword": "がっつり",
        "recommendation_request": True,
    }
