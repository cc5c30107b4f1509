"""
Unit Tests: Core Types

Tests:
    - Result monad behaviour
    - TimeToken upscaling from every supported precision
    - TimeToken conversions and ordering
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from history_fetch.core.types import Err, Ok, TimeToken

# 2017-07-14T02:40:00Z
EPOCH_SECONDS = 1_500_000_000
NATIVE = 15_000_000_000_000_000


class TestResult:
    """Tests for Ok / Err."""

    def test_ok(self):
        result = Ok(3)
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 3
        assert result.map(lambda v: v * 2).unwrap() == 6

    def test_err(self):
        result = Err("boom")
        assert result.is_err()
        assert result.unwrap_or(7) == 7
        assert result.map(lambda v: v * 2) is result

    def test_err_unwrap_raises(self):
        with pytest.raises(RuntimeError):
            Err("boom").unwrap()

    def test_flat_map(self):
        assert Ok(2).flat_map(lambda v: Ok(v + 1)).unwrap() == 3
        assert Ok(2).flat_map(lambda v: Err("no")).is_err()


class TestTimeTokenUpscaling:
    """Integer precision is detected from the digit count."""

    def test_seconds(self):
        assert TimeToken.from_value(EPOCH_SECONDS).unwrap().ticks == NATIVE

    def test_milliseconds(self):
        assert TimeToken.from_value(EPOCH_SECONDS * 1000).unwrap().ticks == NATIVE

    def test_microseconds(self):
        assert TimeToken.from_value(EPOCH_SECONDS * 1_000_000).unwrap().ticks == NATIVE

    def test_native_passthrough(self):
        assert TimeToken.from_value(NATIVE).unwrap().ticks == NATIVE
        assert TimeToken.from_value(NATIVE + 7).unwrap().ticks == NATIVE + 7

    def test_all_precisions_agree(self):
        values = [EPOCH_SECONDS, EPOCH_SECONDS * 1000, EPOCH_SECONDS * 1_000_000, NATIVE]
        tokens = {TimeToken.from_value(v).unwrap() for v in values}
        assert tokens == {TimeToken(NATIVE)}

    def test_float_seconds(self):
        assert TimeToken.from_value(1.5).unwrap().ticks == 15_000_000

    def test_decimal_seconds_keep_fraction(self):
        token = TimeToken.from_value(Decimal("1500000000.25")).unwrap()
        assert token.ticks == NATIVE + 2_500_000

    def test_string(self):
        assert TimeToken.from_value(" 15000000000000000 ").unwrap().ticks == NATIVE

    def test_datetime(self):
        moment = datetime(2017, 7, 14, 2, 40, tzinfo=timezone.utc)
        assert TimeToken.from_value(moment).unwrap().ticks == NATIVE

    def test_token_passthrough(self):
        token = TimeToken(NATIVE)
        assert TimeToken.from_value(token).unwrap() is token

    @pytest.mark.parametrize("value", [None, True, -1, -0.5, "abc", float("nan"), [1]])
    def test_rejected_values(self, value):
        assert TimeToken.from_value(value).is_err()


class TestTimeToken:
    """Tests for TimeToken behaviour."""

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            TimeToken(-1)

    def test_rejects_non_int(self):
        with pytest.raises(TypeError):
            TimeToken(1.5)

    def test_ordering(self):
        assert TimeToken(1) < TimeToken(2)
        assert max(TimeToken(5), TimeToken(3)) == TimeToken(5)

    def test_now_is_seventeen_digits(self):
        assert len(str(TimeToken.now())) == 17

    def test_to_datetime(self):
        assert TimeToken(NATIVE).to_datetime() == datetime(2017, 7, 14, 2, 40, tzinfo=timezone.utc)

    def test_seconds_and_int(self):
        token = TimeToken(NATIVE)
        assert token.seconds == float(EPOCH_SECONDS)
        assert int(token) == NATIVE
        assert str(token) == str(NATIVE)
