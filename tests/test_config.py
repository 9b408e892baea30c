import json
import logging

from castreceiver import config


def test_first_existing_file_wins(tmp_path, monkeypatch):
    broken = tmp_path / "broken.json"
    broken.write_text("{nope")
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"receiver": {"name": "Den", "port": 9000}}))
    monkeypatch.setattr(config, "_SEARCH_PATHS", [
        str(tmp_path / "missing.json"), str(broken), str(good)])

    config.reload_config()
    try:
        assert config.cfg("receiver", "name") == "Den"
        assert config.cfg("receiver", "port") == 9000
        assert config.cfg("bitrate", "ttl_ms", default=600000) == 600000
        assert config.cfg("missing", default={}) == {}
    finally:
        monkeypatch.undo()
        config.reload_config()


def test_suspicious_values_are_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="castreceiver.config"):
        config._validate({
            "receiver": {"name": "Den"},
            "bitrate": {"max": "fast"},
            "progress": {"tick_interval": 0},
            "mpv": {"ao": "beeper"},
        }, "test.json")
    text = caplog.text
    assert "bitrate.max" in text
    assert "progress.tick_interval" in text
    assert "beeper" in text
