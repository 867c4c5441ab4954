# tests/test_logging_system.py - Structured logging, context binding and timing
import pytest

from logging_system import (
    LogCategory, LogLevel, RequestContext, StructuredLogger, TimedOperation,
    reset_current_context, set_current_context,
)


@pytest.fixture
def slog():
    return StructuredLogger(emit=False)


def test_entries_carry_request_context(slog):
    token = set_current_context(RequestContext.create(request_id="req-1", user_id="u-1", organisation_id="org-1"))
    try:
        entry = slog.info("Report exported", category=LogCategory.EXPORT)
    finally:
        reset_current_context(token)

    assert (entry.request_id, entry.correlation_id, entry.user_id, entry.organisation_id) == (
        "req-1", "req-1", "u-1", "org-1",
    )
    assert slog.info("outside").request_id is None


def test_min_level_drops_lower_entries():
    slog = StructuredLogger(min_level=LogLevel.WARNING, emit=False)
    assert slog.info("quiet") is None
    assert slog.warning("loud") is not None
    assert [e.message for e in slog.get_logs()] == ["loud"]


def test_filter_by_category_and_search(slog):
    slog.info("Rendered workbook", category=LogCategory.EXPORT)
    slog.info("Collaborator joined", category=LogCategory.COLLABORATION)
    slog.warning("Rendered slowly", category=LogCategory.EXPORT)

    assert [e.message for e in slog.get_logs(category=LogCategory.EXPORT)] == ["Rendered slowly", "Rendered workbook"]
    assert [e.message for e in slog.get_logs(search="joined")] == ["Collaborator joined"]
    assert [e.message for e in slog.get_logs(level=LogLevel.WARNING)] == ["Rendered slowly"]


def test_timed_operation_records_duration(slog):
    with TimedOperation(slog, "render EXCEL", category=LogCategory.EXPORT, metadata={"report_id": "r1"}):
        pass

    [entry] = slog.get_logs()
    assert entry.message == "Performance: render EXCEL"
    assert entry.category == LogCategory.EXPORT
    assert entry.duration_ms is not None
    assert entry.metadata == {"report_id": "r1"}


def test_timed_operation_logs_failure_and_reraises(slog):
    with pytest.raises(KeyError):
        with TimedOperation(slog, "render WORD", category=LogCategory.EXPORT):
            raise KeyError("total")

    [entry] = slog.get_logs()
    assert entry.level == LogLevel.ERROR
    assert entry.error["type"] == "KeyError"
    assert "KeyError" in entry.stack_trace


def test_audit_entry(slog):
    entry = slog.audit("EXPORT_REPORT", "report:r1", metadata={"format": "HTML"})
    assert entry.category == LogCategory.AUDIT
    assert entry.metadata == {"action": "EXPORT_REPORT", "resource": "report:r1", "format": "HTML"}


def test_handlers_receive_entries(slog):
    seen = []
    slog.add_handler(seen.append)
    slog.error("boom")
    assert [e.message for e in seen] == ["boom"]
    assert seen[0].to_dict()["level"] == "error"
