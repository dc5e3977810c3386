from __future__ import annotations

import pytest

from crudshorts.domain.result import Err, Ok


def test_ok_maps_and_unwraps() -> None:
    result = Ok(2).map(lambda value: value * 3)

    assert result.is_ok()
    assert not result.is_err()
    assert result.unwrap() == 6


def test_err_ignores_map_and_refuses_unwrap() -> None:
    result = Err("boom")

    assert result.map(lambda value: value) is result
    assert result.is_err()
    with pytest.raises(ValueError, match="boom"):
        result.unwrap()
