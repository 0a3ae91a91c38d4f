import pytest

from shrubb_jobs.config.settings import DEV_DATABASE_URL, Settings, get_settings, settings


class TestSettings:
    def test_defaults(self):
        config = Settings(_env_file=None)

        assert config.job_poll_interval_ms == 3000
        assert config.job_max_attempts == 3
        assert config.job_lock_timeout_s == 300
        assert config.poll_interval_s == 3.0
        assert config.worker_id.startswith("worker-")

    def test_worker_ids_are_unique_per_process(self):
        assert Settings(_env_file=None).worker_id != Settings(_env_file=None).worker_id

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("JOB_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("WORKER_ID", "worker-east-1")

        config = Settings(_env_file=None)

        assert config.job_max_attempts == 5
        assert config.worker_id == "worker-east-1"

    def test_lock_timeout_must_exceed_poll_interval(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, job_poll_interval_ms=5000, job_lock_timeout_s=5)

    def test_production_requires_database_url(self):
        with pytest.raises(ValueError):
            Settings(
                _env_file=None, environment="production", database_url=DEV_DATABASE_URL
            )

    def test_production_with_database_url(self):
        config = Settings(
            _env_file=None,
            environment="production",
            database_url="postgresql+asyncpg://jobs@db.internal/shrubb",
        )

        assert config.environment == "production"

    def test_get_settings_returns_global_instance(self):
        assert get_settings() is settings
