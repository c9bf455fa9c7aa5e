import re

import pytest

from oauthflow.client.models.errors import SecurityError
from oauthflow.client.services.security import new_state, validate_state


class TestNewState:
    def test_state_is_url_safe_and_unpadded(self) -> None:
        # Act
        state = new_state()

        # Assert - 16 bytes base64url without padding is 22 characters
        assert len(state) == 22
        assert re.match(r"^[A-Za-z0-9_-]+$", state)

    def test_states_are_unique(self) -> None:
        assert len({new_state() for _ in range(50)}) == 50


class TestValidateState:
    def test_matching_state_passes(self) -> None:
        # Act & Assert - no exception
        validate_state("abc123", "abc123")

    @pytest.mark.parametrize(
        "expected,actual",
        [
            ("S1", "S2"),
            ("abc123", "abc124"),
            ("abc123", "abc12"),
            (None, "abc123"),
            ("abc123", None),
            ("", ""),
        ],
    )
    def test_mismatched_or_missing_state_raises(self, expected, actual) -> None:
        # Act & Assert
        with pytest.raises(SecurityError) as exc_info:
            validate_state(expected, actual)

        assert "invalid state parameter" in str(exc_info.value).lower()
