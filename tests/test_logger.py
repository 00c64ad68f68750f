import logging

import pytest

from logger import get_logger


@pytest.fixture
def app_records():
    base = logging.getLogger("salon")
    records = []
    handler = logging.Handler()
    handler.emit = records.append
    level = base.level
    base.addHandler(handler)
    base.setLevel(logging.INFO)
    yield records
    base.removeHandler(handler)
    base.setLevel(level)


def test_module_loggers_sit_under_the_app_logger():
    log = get_logger("payments")
    assert log.name == "salon.payments"
    assert log.parent is logging.getLogger("salon")
    assert get_logger().name == "salon"
    assert get_logger("salon.visits").name == "salon.visits"


def test_info_lines_reach_the_app_handler(app_records):
    get_logger("payments").info("[PAYMENT] Verified payment %s", "pay_1")
    assert [r.getMessage() for r in app_records] == ["[PAYMENT] Verified payment pay_1"]
    assert app_records[0].levelno == logging.INFO
