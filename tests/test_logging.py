from __future__ import annotations

import logging

from utils.logging import get_logger


def test_bound_and_call_site_extras_are_merged(caplog) -> None:
    logger = get_logger("media_vault.tests.logging", extra={"component": "tests"})

    with caplog.at_level(logging.INFO, logger="media_vault.tests.logging"):
        logger.info("event_happened", extra={"asset_id": "a1"})

    record = caplog.records[-1]
    assert record.getMessage() == "event_happened"
    assert record.component == "tests"
    assert record.asset_id == "a1"
