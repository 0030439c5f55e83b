import json

import pytest

from takeout_import.core.config import ConfigError
from takeout_import.etl.enrich import EnrichmentStage
from takeout_import.jobs import run_import
from takeout_import.jobs.controller import ImportJobController

TOKYO_CSV = "Title,Note,URL\nShibuya Crossing,,https://maps.google.com/?cid=11\n"


class DummySettings:
    def __init__(self):
        self.database_url = "postgres://"
        self.worker_port = 9000


@pytest.fixture
def patched(monkeypatch, fake_store, fake_lookup):
    controller = ImportJobController(fake_store, EnrichmentStage(fake_lookup))
    calls = {"init_pool": 0}

    def fake_init_pool():
        calls["init_pool"] += 1

    monkeypatch.setattr(run_import, "get_settings", lambda: DummySettings())
    monkeypatch.setattr(run_import, "init_pool", fake_init_pool)
    monkeypatch.setattr(run_import, "build_controller", lambda settings, background=True: controller)
    return calls


def test_run_import_job_prints_result(patched, fake_store, make_archive, capsys):
    archive = make_archive({"Takeout/Saved/Tokyo.csv": TOKYO_CSV})

    code = run_import.run_import_job(archive=archive, user_id="user-1")

    assert code == 0
    assert patched["init_pool"] == 1
    output = json.loads(capsys.readouterr().out)
    assert output["success"] is True
    assert output["listsCreated"] == 1
    assert output["placesImported"] == 1
    assert len(fake_store.lists) == 1


def test_run_import_job_filters_lists(patched, fake_store, make_archive, capsys):
    archive = make_archive(
        {
            "Takeout/Saved/Tokyo.csv": TOKYO_CSV,
            "Takeout/Saved/Bars.csv": "Title,URL\nGolden Gai,https://maps.google.com/?cid=3\n",
        }
    )

    run_import.run_import_job(archive=archive, user_id="user-1", lists=["Bars"], skip_lookup=True)

    assert [row["title"] for row in fake_store.lists.values()] == ["Bars"]


def test_run_import_job_failure_exit_code(patched, make_archive, capsys):
    archive = make_archive({"Takeout/readme.txt": "nothing here"})

    assert run_import.run_import_job(archive=archive, user_id="user-1") == 1
    assert json.loads(capsys.readouterr().out)["success"] is False


def test_run_import_job_requires_user(patched):
    with pytest.raises(ValueError):
        run_import.run_import_job(archive="takeout.zip", user_id=" ")


def test_run_analyze_job(patched, make_archive, capsys):
    archive = make_archive({"Takeout/Saved/Tokyo.csv": TOKYO_CSV})

    assert run_import.run_analyze_job(archive=archive) == 0
    assert json.loads(capsys.readouterr().out)["lists"] == [{"name": "Tokyo", "placeCount": 1}]


def test_build_parser():
    args = run_import.build_parser().parse_args(
        ["takeout.zip", "--user", "user-1", "--list", "Tokyo", "--list", "Bars", "--no-geocode"]
    )

    assert args.archive == "takeout.zip"
    assert args.user_id == "user-1"
    assert args.lists == ["Tokyo", "Bars"]
    assert args.skip_lookup is True
    assert args.analyze is False


def test_main_requires_user_unless_analyzing():
    with pytest.raises(SystemExit) as excinfo:
        run_import.main(["takeout.zip"])
    assert excinfo.value.code == 2


def test_main_exits_with_job_code(monkeypatch):
    monkeypatch.setattr(run_import, "run_import_job", lambda **kwargs: 1)

    with pytest.raises(SystemExit) as excinfo:
        run_import.main(["takeout.zip", "--user", "user-1"])
    assert excinfo.value.code == 1


def test_main_reports_config_errors(monkeypatch):
    def broken(**kwargs):
        raise ConfigError("WORKER_PORT must be numeric")

    monkeypatch.setattr(run_import, "run_analyze_job", broken)

    with pytest.raises(SystemExit) as excinfo:
        run_import.main(["takeout.zip", "--analyze"])
    assert excinfo.value.code == 2
