#!/usr/bin/env python3
import logging
import os

import aws_cdk as cdk

from stacks.csv_catalog_stack import CsvCatalogStack
from stacks.settings import StackSettings

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

app = cdk.App()
settings = StackSettings.from_context(app.node)

env = cdk.Environment(
    account=os.getenv("CDK_DEFAULT_ACCOUNT"),
    region=os.getenv("CDK_DEFAULT_REGION"),
)
stack_name = app.node.try_get_context("stack_name") or "CdkS3CsvStack"

# Order matters: the trigger needs the crawler, the crawler needs the database
(
    CsvCatalogStack(app, stack_name, settings=settings, env=env)
    .with_athena()
    .with_github_deploy_role()
    .with_crawler_trigger()
)

app.synth()
