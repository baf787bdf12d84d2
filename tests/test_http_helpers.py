import pytest

from csrf import generate_csrf_token, validate_csrf_token
from main import parse_amount


def test_parse_amount_accepts_yen_formats():
    assert parse_amount("12000") == 12_000
    assert parse_amount("¥12,000") == 12_000
    assert parse_amount(" 3 500円") == 3_500
    assert parse_amount("-250", allow_negative=True) == -250


def test_parse_amount_rejects_bad_input():
    with pytest.raises(ValueError):
        parse_amount("12.50")
    with pytest.raises(ValueError):
        parse_amount("-1")
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_csrf_token_round_trip():
    token = generate_csrf_token()
    assert validate_csrf_token(token)
    assert not validate_csrf_token(token, user_id=2)
    assert not validate_csrf_token(token + "x")
    assert not validate_csrf_token("")


def test_csrf_token_expires():
    token = generate_csrf_token()
    assert not validate_csrf_token(token, max_age=-1)
