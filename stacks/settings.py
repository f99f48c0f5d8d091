import logging
import re
from dataclasses import dataclass
from pathlib import Path

from constructs import Node

logger = logging.getLogger(__name__)

SEED_PREFIX = "seed"
RESULTS_PREFIX = "athena-results"
TABLE_PREFIX = "seed_"
DEFAULT_STAGE = "dev"
PRODUCTION_STAGES = ("prod", "production")
DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"

GITHUB_REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class ConfigurationError(ValueError):
    """Raised when the CDK context does not describe a deployable stack."""


@dataclass(frozen=True)
class StackSettings:
    stage: str
    github_repo: str
    data_dir: Path = DEFAULT_DATA_DIR
    seed_prefix: str = SEED_PREFIX
    results_prefix: str = RESULTS_PREFIX
    table_prefix: str = TABLE_PREFIX

    def __post_init__(self):
        if not self.stage:
            raise ConfigurationError("stage must not be empty")
        if not GITHUB_REPO_PATTERN.match(self.github_repo or ""):
            raise ConfigurationError(
                f"github_repo must look like '<org>/<repo>', got {self.github_repo!r}"
            )
        if not self.data_dir.is_dir():
            raise ConfigurationError(f"data_dir {self.data_dir} is not a directory")

    @property
    def destructive(self) -> bool:
        """Whether teardown may delete the bucket and everything in it"""
        return self.stage.lower() not in PRODUCTION_STAGES

    @property
    def github_subject(self) -> str:
        return f"repo:{self.github_repo}:*"

    @classmethod
    def from_context(cls, node: Node) -> "StackSettings":
        """Reads settings from CDK context (cdk.json or `cdk synth -c key=value`).

        `github_repo` has no default: a forked or renamed repository must
        say which repository may assume the deploy role.
        """
        github_repo = node.try_get_context("github_repo")
        if not github_repo:
            raise ConfigurationError(
                "missing context value 'github_repo', pass -c github_repo=<org>/<repo>"
            )
        stage = node.try_get_context("stage") or DEFAULT_STAGE
        data_dir = node.try_get_context("data_dir")

        settings = cls(
            stage=stage,
            github_repo=github_repo,
            data_dir=Path(data_dir) if data_dir else DEFAULT_DATA_DIR,
        )
        logger.info(
            "Resolved settings: stage=%s github_repo=%s data_dir=%s",
            settings.stage,
            settings.github_repo,
            settings.data_dir,
        )
        if settings.destructive:
            logger.warning(
                "Stage %s is non-production, bucket contents are deleted on teardown",
                settings.stage,
            )
        return settings
