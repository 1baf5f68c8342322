from __future__ import annotations

import pytest

from darp.domain.errors import (
    AlreadyExists,
    DarpError,
    InvalidFormat,
    InvalidInput,
    IOFailure,
    NotFound,
    PreconditionFailed,
)


@pytest.mark.parametrize(
    "error_type",
    [NotFound, AlreadyExists, InvalidInput, InvalidFormat, IOFailure, PreconditionFailed],
)
def test_every_error_is_a_darp_error(error_type: type[DarpError]) -> None:
    error = error_type("message")
    assert isinstance(error, DarpError)
    assert str(error) == "message"
