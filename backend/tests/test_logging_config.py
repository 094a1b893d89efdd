"""
test_logging_config.py — JSON log lines and request-id propagation.
"""

import json
import logging
from decimal import Decimal

from app.services.logging_config import (
    JSONFormatter,
    RequestContextFilter,
    bind_request_id,
    current_request_id,
    reset_request_id,
)


def _record(**extra):
    record = logging.LogRecord("fhx-db.quotations", logging.INFO, __file__, 10, "Quotation saved", None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestJSONFormatter:

    def test_extras_serialised(self):
        line = json.loads(JSONFormatter().format(_record(quotation_id="q-1", tiers=[500, 750], cost=Decimal("1"))))
        assert line["message"] == "Quotation saved"
        assert line["logger"] == "fhx-db.quotations"
        assert line["quotation_id"] == "q-1"
        assert line["tiers"] == [500, 750]
        assert "cost" not in line

    def test_decimal_extra_does_not_break_line(self):
        line = json.loads(JSONFormatter().format(_record(resources=[Decimal("1.50")])))
        assert line["resources"] == ["1.50"]


class TestRequestContext:

    def test_bound_id_stamped(self):
        token = bind_request_id("req-7")
        try:
            record = _record()
            assert RequestContextFilter().filter(record)
            assert record.request_id == "req-7"
        finally:
            reset_request_id(token)
        assert current_request_id() == ""

    def test_explicit_id_kept(self):
        token = bind_request_id("req-7")
        try:
            record = _record(request_id="own")
            RequestContextFilter().filter(record)
            assert record.request_id == "own"
        finally:
            reset_request_id(token)

    def test_no_request_in_flight(self):
        record = _record()
        RequestContextFilter().filter(record)
        assert not hasattr(record, "request_id")
