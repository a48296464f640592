from __future__ import annotations

import pytest

from workflow_testenv.context.isolation import ISOLATION_KEY_MAX_LENGTH, derive_isolation_key


def test_short_names_are_joined_verbatim() -> None:
    assert derive_isolation_key("Foo", "bar") == "Foo_bar"
    assert derive_isolation_key("Foo", "bar") == derive_isolation_key("Foo", "bar")


def test_long_names_are_truncated() -> None:
    key = derive_isolation_key("OrderFulfillmentProcessTests", "shouldCompleteOrder")
    assert len(key) == ISOLATION_KEY_MAX_LENGTH
    assert key == "OrderFulfillmentProcessTests_s"


def test_long_shared_prefix_collides() -> None:
    # Truncation keeps the key readable; distinct tests with a long common prefix share it.
    first = derive_isolation_key("OrderFulfillmentProcessTests", "shouldCompleteOrder")
    second = derive_isolation_key("OrderFulfillmentProcessTests", "shouldCancelOrder")
    assert first == second


def test_custom_length() -> None:
    assert derive_isolation_key("Foo", "bar", max_length=5) == "Foo_b"
    with pytest.raises(ValueError):
        derive_isolation_key("Foo", "bar", max_length=0)


def test_long_suite_name_is_cut_to_thirty_characters() -> None:
    key = derive_isolation_key("ProcessInstanceIntegrationTestSuite", "shouldCompleteLongRunningUserTaskWithVariables")
    assert len(key) == 30
    assert key == "ProcessInstanceIntegrationTest"
