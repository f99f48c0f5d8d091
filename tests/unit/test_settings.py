import json
from pathlib import Path

import aws_cdk as core
import pytest

from stacks.settings import DEFAULT_DATA_DIR, ConfigurationError, StackSettings

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def test_from_context_reads_values(tmp_path):
    app = core.App(
        context={
            "stage": "prod",
            "github_repo": "acme/csv-catalog",
            "data_dir": str(tmp_path),
        }
    )
    settings = StackSettings.from_context(app.node)

    assert settings.stage == "prod"
    assert settings.github_repo == "acme/csv-catalog"
    assert settings.data_dir == tmp_path
    assert settings.seed_prefix == "seed"
    assert settings.results_prefix == "athena-results"
    assert settings.table_prefix == "seed_"


def test_from_context_defaults():
    app = core.App(context={"github_repo": "acme/csv-catalog"})
    settings = StackSettings.from_context(app.node)

    assert settings.stage == "dev"
    assert settings.data_dir == DEFAULT_DATA_DIR


def test_github_repo_is_mandatory():
    app = core.App()
    with pytest.raises(ConfigurationError, match="github_repo"):
        StackSettings.from_context(app.node)


@pytest.mark.parametrize("repo", ["*", "acme/*", "acme", "acme/csv/extra", ""])
def test_github_repo_must_name_a_single_repository(repo):
    with pytest.raises(ConfigurationError):
        StackSettings(stage="dev", github_repo=repo)


def test_missing_data_dir_is_rejected(tmp_path):
    with pytest.raises(ConfigurationError, match="not a directory"):
        StackSettings(
            stage="dev", github_repo="acme/csv-catalog", data_dir=tmp_path / "missing"
        )


@pytest.mark.parametrize(
    "stage,destructive",
    [("dev", True), ("demo", True), ("test", True), ("prod", False), ("Production", False)],
)
def test_only_non_production_stages_are_destructive(stage, destructive):
    settings = StackSettings(stage=stage, github_repo="acme/csv-catalog")
    assert settings.destructive is destructive


def test_subject_is_scoped_to_repository():
    settings = StackSettings(stage="dev", github_repo="acme/csv-catalog")
    assert settings.github_subject == "repo:acme/csv-catalog:*"


def test_cdk_json_does_not_supply_a_github_repo():
    with open(PROJECT_ROOT / "cdk.json") as f:
        context = json.load(f)["context"]
    app = core.App(context=context)

    assert "github_repo" not in context
    with pytest.raises(ConfigurationError, match="github_repo"):
        StackSettings.from_context(app.node)
