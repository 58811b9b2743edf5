from unittest.mock import Mock

import pytest

from deliverycast.broadcast.countdown import CountdownPresenter
from deliverycast.core.clock import to_epoch_ms

from fakes import T0


@pytest.mark.parametrize("left_ms, expected", [
    (60_000, 60),
    (59_999, 59),
    (1_500, 1),
    (999, 0),
    (0, 0),
    (-5_000, 0),
])
def test_remaining_is_floored_and_never_negative(left_ms, expected):
    presenter = CountdownPresenter("D1", T0 + left_ms, on_expire=Mock())
    assert presenter.tick(T0) == expected


def test_expiry_fires_exactly_once():
    on_expire = Mock()
    presenter = CountdownPresenter("D1", T0 + 2_000, on_expire=on_expire)

    assert presenter.tick(T0) == 2
    assert presenter.tick(T0 + 1_000) == 1
    on_expire.assert_not_called()

    assert presenter.tick(T0 + 2_000) == 0
    presenter.tick(T0 + 3_000)
    presenter.tick(T0 + 4_000)
    on_expire.assert_called_once_with("D1")
    assert presenter.expired is True
    assert presenter.stopped is True


def test_stopped_presenter_does_not_expire():
    on_expire = Mock()
    presenter = CountdownPresenter("D1", T0 + 1_000, on_expire=on_expire)
    presenter.stop()
    presenter.tick(T0 + 5_000)
    on_expire.assert_not_called()


def test_missing_end_starts_window_at_first_tick():
    on_expire = Mock()
    presenter = CountdownPresenter("D1", None, on_expire=on_expire, duration_s=30)
    assert presenter.tick(T0) == 30
    assert presenter.end_ms == T0 + 30_000
    assert presenter.tick(T0 + 29_500) == 0
    on_expire.assert_called_once_with("D1")


@pytest.mark.parametrize("end", ["soon", 12.5, True, {"at": 1}])
def test_malformed_end_falls_back_to_default_window(end):
    presenter = CountdownPresenter("D1", end, on_expire=Mock(), duration_s=None)
    assert presenter.tick(T0) == 60


def test_failing_expiry_handler_is_contained():
    presenter = CountdownPresenter("D1", T0, on_expire=Mock(side_effect=RuntimeError("boom")))
    assert presenter.tick(T0) == 0
    assert presenter.expired is True


@pytest.mark.parametrize("left_ms, label", [
    (125_000, "2:05"),
    (60_000, "1:00"),
    (9_000, "0:09"),
])
def test_label(left_ms, label):
    presenter = CountdownPresenter("D1", T0 + left_ms, on_expire=Mock())
    presenter.tick(T0)
    assert presenter.label == label


def test_label_before_first_tick():
    assert CountdownPresenter("D1", T0, on_expire=Mock()).label == "0:00"


@pytest.mark.parametrize("value", ["²", "١٢٣", "12a", ""])
def test_non_ascii_or_junk_timestamps_are_rejected(value):
    assert to_epoch_ms(value) is None


def test_digit_string_timestamp_is_epoch_ms():
    assert to_epoch_ms(str(T0)) == T0
