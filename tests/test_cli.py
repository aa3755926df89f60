"""CLI smoke tests."""

import logging

import pytest
from typer.testing import CliRunner

from shoppatrol import __version__
from shoppatrol.cli.main import app
from shoppatrol.core.records import (
    PatrolMode,
    PatrolRun,
    PatrolTarget,
    ProductRecord,
    RiskAssessment,
    RiskLevel,
    ScannedItem,
)
from shoppatrol.core.report import read_csv
from shoppatrol.persistence.gateway import SqlSessionStore

runner = CliRunner(env={"COLUMNS": "250"})

SHOP = "https://www.rakuten.co.jp/shop-a/"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text(
        f"data_dir: {tmp_path / 'data'}\n"
        "database:\n"
        f"  url: sqlite:///{tmp_path / 'cli.db'}\n"
        "logging:\n"
        "  level: WARNING\n"
        f"  file: {tmp_path / 'logs' / 'cli.log'}\n"
        "  rich_console: false\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def stored_run(tmp_path, config_file):
    store = SqlSessionStore.from_url(f"sqlite:///{tmp_path / 'cli.db'}")
    items = [
        ScannedItem(
            product=ProductRecord(name=name, canonical_url=f"https://item/{i}", source_item_id=str(i)),
            assessment=RiskAssessment.judged(level, is_critical=level == RiskLevel.CRITICAL, reason="r"),
            target_url=SHOP,
        )
        for i, (name, level) in enumerate([("Tote", RiskLevel.LOW), ("Watch", RiskLevel.CRITICAL)])
    ]
    return store.create(
        PatrolRun(mode=PatrolMode.SINGLE, label=SHOP, targets=[PatrolTarget(url=SHOP)], items=items)
    )


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_runs_list(config_file, stored_run):
    result = runner.invoke(app, ["runs", "list", "-c", str(config_file)])
    assert result.exit_code == 0, result.stdout
    assert "SINGLE" in result.stdout


def test_runs_export_risky(tmp_path, config_file, stored_run):
    output = tmp_path / "out.csv"
    result = runner.invoke(
        app, ["runs", "export", stored_run, str(output), "--risky", "-c", str(config_file)]
    )

    assert result.exit_code == 0, result.stdout
    rows = read_csv(output)
    assert [(r["Name"], r["Risk"]) for r in rows] == [("Watch", "CRITICAL")]


def test_runs_show_unknown(config_file):
    result = runner.invoke(app, ["runs", "show", "nope", "-c", str(config_file)])
    assert result.exit_code == 1


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger("shoppatrol")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
