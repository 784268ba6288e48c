import io
import json
import logging

from hare_pos.utils import structured_logging
from hare_pos.utils.structured_logging import ConsoleFormatter, JSONFormatter, get_logger


def test_bound_context_lands_on_records(caplog):
    log = get_logger("hare_pos.test").bind(org_id="org-1", session_id="s-1")

    with caplog.at_level(logging.INFO, logger="hare_pos.test"):
        log.bind(order_id="o-9").info("Order placed")

    record = caplog.records[-1]
    assert (record.org_id, record.session_id, record.order_id) == ("org-1", "s-1", "o-9")
    # Binding returns a new logger; the parent keeps its own context
    assert "order_id" not in log.extra


def test_json_formatter_carries_context_only_when_set():
    record = logging.LogRecord("hare_pos.x", logging.WARNING, __file__, 1, "Save failed", None, None)
    record.org_id = "org-1"

    entry = json.loads(JSONFormatter().format(record))

    assert entry["level"] == "WARNING"
    assert entry["msg"] == "Save failed"
    assert entry["org_id"] == "org-1"
    assert "session_id" not in entry


def test_console_formatter_tags_and_truncates():
    record = logging.LogRecord("hare_pos.x", logging.INFO, __file__, 1, "x" * 600, None, None)
    record.org_id = "org-1"

    line = ConsoleFormatter().format(record)

    assert "[org-1]" in line
    assert "x" * 497 + "..." in line
    assert "x" * 498 not in line


def test_configure_logging_picks_formatter_by_environment(mocker):
    root = logging.getLogger()
    saved = (root.handlers[:], root.level)
    try:
        mocker.patch.object(structured_logging.settings, "ENVIRONMENT", "production")
        structured_logging.configure_logging(stream=io.StringIO())
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

        mocker.patch.object(structured_logging.settings, "ENVIRONMENT", "development")
        structured_logging.configure_logging(stream=io.StringIO())
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)
    finally:
        root.handlers = saved[0]
        root.setLevel(saved[1])
