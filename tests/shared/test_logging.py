import json
import logging

from bulkgrant.shared.logging import event_payload, get_logger, log_event


def test_event_payload_drops_credential_fields():
    payload = event_payload("job.submitted", {"job_id": "job1", "credential": "secret", "Authorization": "Bearer x"})

    assert payload == {"event": "job.submitted", "job_id": "job1"}


def test_log_event_writes_one_json_line(caplog):
    logger = get_logger("bulkgrant.test")

    with caplog.at_level(logging.INFO, logger="bulkgrant.test"):
        log_event(logger, "batch.completed", job_id="job1", token="secret", percentage=50)
        log_event(logger, "task.failed", level=logging.WARNING, job_id="job1")

    records = [(record.levelno, json.loads(record.getMessage())) for record in caplog.records]
    assert records == [
        (logging.INFO, {"event": "batch.completed", "job_id": "job1", "percentage": 50}),
        (logging.WARNING, {"event": "task.failed", "job_id": "job1"}),
    ]


def test_log_event_skips_disabled_levels(caplog):
    logger = get_logger("bulkgrant.test.quiet")

    with caplog.at_level(logging.WARNING, logger="bulkgrant.test.quiet"):
        log_event(logger, "job.started", job_id="job1")

    assert caplog.records == []
