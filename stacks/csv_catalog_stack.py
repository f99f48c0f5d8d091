import re

from constructs import Construct
from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_athena as athena,
    aws_glue as glue,
    aws_glue_alpha as glue_alpha,
    aws_iam as iam,
    aws_s3 as s3,
    aws_s3_deployment as s3deploy,
    custom_resources as cr,
)

from stacks.settings import StackSettings

GITHUB_OIDC_HOST = "token.actions.githubusercontent.com"
GITHUB_OIDC_AUDIENCE = "sts.amazonaws.com"


class CsvCatalogStack(Stack):
    settings: StackSettings
    bucket: s3.Bucket
    seed_deployment: s3deploy.BucketDeployment
    glue_database: glue_alpha.Database
    crawler_role: iam.Role
    crawler: glue.CfnCrawler
    workgroup: athena.CfnWorkGroup
    deploy_role: iam.Role
    crawler_trigger: cr.AwsCustomResource

    def __init__(
        self, scope: Construct, construct_id: str, settings: StackSettings, **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.settings = settings
        self.workgroup = None
        self.deploy_role = None
        self.crawler_trigger = None

        # Teardown only wipes data outside production
        self.bucket = s3.Bucket(
            self,
            "CsvBucket",
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            encryption=s3.BucketEncryption.S3_MANAGED,
            removal_policy=RemovalPolicy.DESTROY
            if settings.destructive
            else RemovalPolicy.RETAIN,
            auto_delete_objects=settings.destructive,
        )

        # Upload local data into s3://<bucket>/seed/
        self.seed_deployment = s3deploy.BucketDeployment(
            self,
            "UploadCsv",
            destination_bucket=self.bucket,
            sources=[s3deploy.Source.asset(str(settings.data_dir))],
            destination_key_prefix=f"{settings.seed_prefix}/",
            retain_on_delete=not settings.destructive,
        )

        self.glue_database = glue_alpha.Database(
            self,
            "CsvGlueDatabase",
            database_name=self.glue_database_name,
            description=f"Tables crawled from {self.seed_location}",
        )

        self.crawler_role = iam.Role(
            self,
            "CsvCrawlerRole",
            assumed_by=iam.ServicePrincipal("glue.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSGlueServiceRole"
                )
            ],
        )
        self.bucket.grant_read(self.crawler_role)

        # Header detection fails when every column is a string, so say it explicitly
        csv_classifier = glue.CfnClassifier(
            self,
            "CsvHeaderClassifier",
            csv_classifier=glue.CfnClassifier.CsvClassifierProperty(
                name=self.name_resource("csv-header-classifier"),
                allow_single_column=False,
                contains_header="PRESENT",
                delimiter=",",
                disable_value_trimming=False,
                quote_symbol='"',
            ),
        )

        self.crawler = glue.CfnCrawler(
            self,
            "CsvCrawler",
            name=self.crawler_name,
            role=self.crawler_role.role_arn,
            database_name=self.glue_database.database_name,
            table_prefix=settings.table_prefix,
            classifiers=[csv_classifier.ref],
            targets=glue.CfnCrawler.TargetsProperty(
                s3_targets=[glue.CfnCrawler.S3TargetProperty(path=self.seed_location)]
            ),
            schema_change_policy=glue.CfnCrawler.SchemaChangePolicyProperty(
                update_behavior="UPDATE_IN_DATABASE",
                delete_behavior="LOG",
            ),
        )
        self.crawler.node.add_dependency(self.glue_database)

        CfnOutput(self, "BucketName", value=self.bucket.bucket_name)
        CfnOutput(self, "GlueDatabaseName", value=self.glue_database_name)

    @property
    def glue_database_name(self) -> str:
        return f"{self.stack_name.lower()}_db"

    @property
    def crawler_name(self) -> str:
        return self.name_resource("seed-crawler")

    @property
    def seed_location(self) -> str:
        return f"s3://{self.bucket.bucket_name}/{self.settings.seed_prefix}/"

    @property
    def query_results_location(self) -> str:
        return f"s3://{self.bucket.bucket_name}/{self.settings.results_prefix}/"

    @property
    def dataset_folders(self):
        """Top-level folders of the seeded data, one crawled table each"""
        return sorted(
            path.name for path in self.settings.data_dir.iterdir() if path.is_dir()
        )

    def table_name(self, dataset_folder: str) -> str:
        # Glue lowercases table names and replaces anything it can't keep
        return self.settings.table_prefix + re.sub(
            r"[^a-z0-9_]", "_", dataset_folder.lower()
        )

    def with_athena(self):
        """Adds a workgroup writing to s3://<bucket>/athena-results/ and a
        preview query for every crawled dataset"""
        self.workgroup = athena.CfnWorkGroup(
            self,
            "CsvWorkgroup",
            name=self.name_resource("workgroup"),
            description=f"Queries over {self.glue_database_name}",
            state="ENABLED",
            recursive_delete_option=self.settings.destructive,
            work_group_configuration=athena.CfnWorkGroup.WorkGroupConfigurationProperty(
                enforce_work_group_configuration=True,
                result_configuration=athena.CfnWorkGroup.ResultConfigurationProperty(
                    output_location=self.query_results_location
                ),
            ),
        )

        for dataset_folder in self.dataset_folders:
            table_name = self.table_name(dataset_folder)
            query = athena.CfnNamedQuery(
                self,
                f"PreviewQuery-{dataset_folder}",
                database=self.glue_database_name,
                query_string=f'SELECT * FROM "{self.glue_database_name}"."{table_name}" LIMIT 10',
                description=f"Preview the {dataset_folder} dataset",
                name=self.name_resource(f"preview_{table_name}", delimiter="_"),
                work_group=self.workgroup.name,
            )
            query.node.add_dependency(self.workgroup)

        CfnOutput(self, "AthenaQueryResults", value=self.query_results_location)
        return self

    def with_github_deploy_role(self):
        """Adds a role GitHub Actions in `settings.github_repo` can assume through
        the account's existing GitHub OIDC provider.

        The role gets AdministratorAccess so the workflow can run `cdk deploy`.
        """
        provider_arn = f"arn:aws:iam::{self.account}:oidc-provider/{GITHUB_OIDC_HOST}"
        self.deploy_role = iam.Role(
            self,
            "GithubDeployRole",
            description=f"Deploys {self.stack_name} from {self.settings.github_repo}",
            assumed_by=iam.FederatedPrincipal(
                provider_arn,
                conditions={
                    "StringEquals": {
                        f"{GITHUB_OIDC_HOST}:aud": GITHUB_OIDC_AUDIENCE,
                    },
                    "StringLike": {
                        f"{GITHUB_OIDC_HOST}:sub": self.settings.github_subject,
                    },
                },
                assume_role_action="sts:AssumeRoleWithWebIdentity",
            ),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AdministratorAccess")
            ],
            max_session_duration=Duration.hours(1),
        )
        CfnOutput(self, "GithubDeployRoleArn", value=self.deploy_role.role_arn)
        return self

    def with_crawler_trigger(self):
        """Starts the crawler once, right after it is created.

        The call only repeats when the physical resource id changes, i.e. when
        the crawler is renamed.
        """
        self.crawler_trigger = cr.AwsCustomResource(
            self,
            "StartCrawler",
            on_create=cr.AwsSdkCall(
                service="Glue",
                action="startCrawler",
                parameters={"Name": self.crawler_name},
                physical_resource_id=cr.PhysicalResourceId.of(
                    f"{self.crawler_name}-start"
                ),
            ),
            policy=cr.AwsCustomResourcePolicy.from_statements(
                [
                    iam.PolicyStatement(
                        effect=iam.Effect.ALLOW,
                        actions=["glue:StartCrawler"],
                        resources=[
                            self.format_arn(
                                service="glue",
                                resource="crawler",
                                resource_name=self.crawler_name,
                            )
                        ],
                    )
                ]
            ),
            install_latest_aws_sdk=False,
        )
        # Crawl only once the data and the role's read grant are in place
        self.crawler_trigger.node.add_dependency(
            self.crawler, self.seed_deployment, self.crawler_role
        )
        return self

    def name_resource(self, resource_name: str, delimiter="-"):
        """Just a method to name resources more consistently"""
        name_components = [
            item
            for item in [
                self.stack_name.lower(),
                resource_name,
                self.settings.stage,
            ]
            if item
        ]
        return delimiter.join(name_components)
