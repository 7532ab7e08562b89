from leasesign.core.config import Settings


def test_settings_load_without_env_file(monkeypatch):
    for name in (
        "LOG_FILE", "REDIS_HOST", "REDIS_PORT", "REDIS_USERNAME", "REDIS_PASSWORD", "DOCUSIGN_WEBHOOK_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.log_file is None
    assert settings.docusign_webhook_secret is None
    assert settings.redis_url == "redis://localhost:6379"
    assert settings.celery_broker == "redis://localhost:6379/1"
