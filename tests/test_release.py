import pytest
from sqlalchemy.orm import Session

from app.marketplace.db import build_engine
from app.marketplace.models import User
from scripts import release


@pytest.fixture()
def release_db(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ADMIN_EMAIL", "ops@marketplace.test")
    monkeypatch.setenv("ADMIN_PASSWORD", "release-secret")
    return url


def test_release_refuses_missing_or_sqlite_production_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        release.database_url()
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        release.database_url()


def test_check_fails_on_an_unmigrated_database(release_db):
    current, head = release.schema_revisions(release_db)
    assert current is None
    assert head == "0002_project_drafts"
    with pytest.raises(RuntimeError):
        release.run_release(check_only=True)
    with pytest.raises(SystemExit):
        release.main(["--check"])


def test_release_migrates_to_head_and_seeds_admin(release_db):
    release.run_release()
    assert release.schema_revisions(release_db) == ("0002_project_drafts", "0002_project_drafts")
    release.run_release(check_only=True)
    # A second run has nothing to migrate and keeps a single admin.
    release.run_release()

    engine = build_engine(release_db)
    try:
        with Session(engine) as s:
            admins = s.query(User).filter(User.email == "ops@marketplace.test").all()
            assert len(admins) == 1
            assert "admin" in admins[0].role_keys
    finally:
        engine.dispose()
