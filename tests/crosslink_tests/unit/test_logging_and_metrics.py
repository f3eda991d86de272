import json
import logging

from prometheus_client import CollectorRegistry

from crosslink.core.logging_config import CustomJsonFormatter, get_logger, setup_logging
from crosslink.core.metrics import HandshakeMetrics, get_metrics


def _record(message="Handshake step completed", **extra):
    record = logging.LogRecord(
        name="crosslink.ibc.handshake",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_adds_service_fields():
    formatter = CustomJsonFormatter(environment="ci", service_name="crosslink")
    payload = json.loads(formatter.format(_record(event="handshake.init", chain_id=1001)))
    assert payload["message"] == "Handshake step completed"
    assert payload["event"] == "handshake.init"
    assert payload["chain_id"] == 1001
    assert payload["environment"] == "ci"
    assert payload["service"] == "crosslink"
    assert payload["level"] == "info"
    assert payload["source"]["line"] == 10
    assert "timestamp" in payload


def test_setup_logging_writes_rotating_file(tmp_path):
    log_file = tmp_path / "logs" / "crosslink.json"
    logger = setup_logging(
        name="crosslink.test_file",
        log_file=str(log_file),
        level="DEBUG",
        enable_console=False,
    )
    logger.info("synced", extra={"event": "chain.header_synced", "height": 3})
    for handler in logger.handlers:
        handler.flush()
    line = log_file.read_text().strip().splitlines()[-1]
    assert json.loads(line)["height"] == 3


def test_get_logger_reuses_configuration():
    first = setup_logging(name="crosslink.test_reuse", enable_file=False)
    handlers = list(first.handlers)
    assert get_logger("crosslink.test_reuse").handlers == handlers


def test_metrics_counters():
    metrics = HandshakeMetrics(registry=CollectorRegistry())
    metrics.record_handshake_step("1001", "try", ok=False)
    metrics.record_client_operation("1001", "update_client", ok=True)
    metrics.record_proof_query("2001", "ok")

    registry = metrics.registry
    assert registry.get_sample_value(
        "crosslink_handshake_steps_total", {"chain_id": "1001", "step": "try", "outcome": "error"}
    ) == 1.0
    assert registry.get_sample_value(
        "crosslink_client_operations_total",
        {"chain_id": "1001", "operation": "update_client", "outcome": "ok"},
    ) == 1.0
    assert b"crosslink_proof_queries_total" in metrics.export_prometheus()


def test_default_metrics_singleton():
    assert get_metrics() is get_metrics()


def test_setup_logging_closes_replaced_handlers(tmp_path):
    log_file = tmp_path / "crosslink.json"
    first = setup_logging(name="crosslink.test_reconfigure", log_file=str(log_file), enable_console=False)
    old_handler = first.handlers[0]
    assert old_handler.stream is not None

    second = setup_logging(name="crosslink.test_reconfigure", log_file=str(log_file), enable_console=False)
    assert old_handler not in second.handlers
    assert old_handler.stream is None
    assert len(second.handlers) == 1
