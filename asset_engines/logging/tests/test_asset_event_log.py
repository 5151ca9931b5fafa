import logging

from asset_engines.logging.event_log import EventLogEntry, default_event_logger


def test_default_event_logger_emits_structured_record(caplog):
    entry = EventLogEntry(
        event_type="asset_served",
        asset_type="gallery_item",
        asset_id="1/images/image.png",
        user_id="u1",
        request_id="req-1",
        metadata={"bytes": 10},
    )
    with caplog.at_level(logging.INFO, logger="asset_engines.events"):
        default_event_logger(entry)
    (record,) = [r for r in caplog.records if r.name == "asset_engines.events"]
    assert "asset_served" in record.getMessage()
    assert record.request_id == "req-1"
    assert record.event_metadata["bytes"] == 10
    assert record.event_metadata["actor_type"] == "human"


def test_anonymous_actor_when_no_user(caplog):
    entry = EventLogEntry(event_type="asset_ingested", asset_type="gallery_item", asset_id="1/images")
    with caplog.at_level(logging.INFO, logger="asset_engines.events"):
        default_event_logger(entry)
    assert caplog.records[-1].event_metadata["actor_type"] == "anonymous"
