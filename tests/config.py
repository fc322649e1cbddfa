import pytest
from pytest_assume.plugin import assume

from event_reminders.helpers import config


def test_missing_config_file(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Test loading fails without a config file nor the JSON env.
    """
    monkeypatch.delenv("CONFIG_JSON", raising=False)
    monkeypatch.setattr(config, "find_dotenv", lambda filename: "")  # noqa: ARG005

    with pytest.raises(ValueError, match="Cannot find config file"):
        config.load_config()


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "CONFIG_JSON", '{"scheduler": {"autostart": false, "retry_delay_sec": 30}}'
    )

    loaded = config.load_config()
    assume(not loaded.scheduler.autostart)
    assume(loaded.scheduler.retry_delay_sec == 30)
