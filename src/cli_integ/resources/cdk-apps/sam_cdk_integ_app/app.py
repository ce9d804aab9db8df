"""CDK app exercising every asset type that SAM understands.

Construct ids are fixed: the harness tests assert on the logical ids
derived from them. Stack names carry the fixture's STACK_NAME_PREFIX.
"""

import os
from pathlib import Path

from aws_cdk import App, BundlingOptions, NestedStack, Stack
from aws_cdk import aws_apigateway as apigateway
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_lambda_nodejs as lambda_nodejs
from aws_cdk import aws_logs as logs
from aws_cdk.aws_lambda_go_alpha import GoFunction
from aws_cdk.aws_lambda_python_alpha import PythonFunction, PythonLayerVersion
from constructs import Construct

SRC = Path(__file__).parent / "src"
RUNTIME = lambda_.Runtime.PYTHON_3_12

PIP_INSTALL = "pip install -r requirements.txt -t {out} && cp -au . {out}"


class InnerStack(NestedStack):
    def __init__(self, scope: Construct, construct_id: str) -> None:
        super().__init__(scope, construct_id)

        lambda_.Function(
            self,
            "FunctionPythonRuntime",
            runtime=RUNTIME,
            code=lambda_.Code.from_asset(str(SRC / "python" / "Function")),
            handler="app.lambda_handler",
        )


class TestStack(Stack):
    def __init__(self, scope: Construct, construct_id: str) -> None:
        super().__init__(scope, construct_id)

        layer_dir = str(SRC / "python" / "Layer")
        function_dir = str(SRC / "python" / "Function")

        # Layers
        PythonLayerVersion(
            self,
            "PythonLayerVersion",
            entry=layer_dir,
            compatible_runtimes=[RUNTIME],
        )
        lambda_.LayerVersion(
            self,
            "LayerVersion",
            code=lambda_.Code.from_asset(layer_dir),
            compatible_runtimes=[RUNTIME],
        )
        lambda_.LayerVersion(
            self,
            "BundledLayerVersionPythonRuntime",
            code=lambda_.Code.from_asset(
                layer_dir,
                bundling=BundlingOptions(
                    image=RUNTIME.bundling_image,
                    command=["bash", "-c", PIP_INSTALL.format(out="/asset-output/python")],
                ),
            ),
            compatible_runtimes=[RUNTIME],
        )

        # Python functions
        PythonFunction(
            self,
            "PythonFunction",
            entry=function_dir,
            index="app.py",
            handler="lambda_handler",
            runtime=RUNTIME,
        )
        lambda_.Function(
            self,
            "FunctionPythonRuntime",
            runtime=RUNTIME,
            code=lambda_.Code.from_asset(function_dir),
            handler="app.lambda_handler",
            log_retention=logs.RetentionDays.ONE_WEEK,
        )
        lambda_.Function(
            self,
            "BundledFunctionPythonRuntime",
            runtime=RUNTIME,
            code=lambda_.Code.from_asset(
                function_dir,
                bundling=BundlingOptions(
                    image=RUNTIME.bundling_image,
                    command=["bash", "-c", PIP_INSTALL.format(out="/asset-output")],
                ),
            ),
            handler="app.lambda_handler",
        )

        # Other runtimes
        nodejs_dir = SRC / "nodejs" / "NodeJsFunctionConstruct"
        lambda_nodejs.NodejsFunction(
            self,
            "NodejsFunction",
            entry=str(nodejs_dir / "index.js"),
            handler="handler",
            deps_lock_file=str(nodejs_dir / "package-lock.json"),
            project_root=str(nodejs_dir),
        )
        GoFunction(
            self,
            "GoFunction",
            entry=str(SRC / "go" / "GoFunctionConstruct"),
        )
        lambda_.DockerImageFunction(
            self,
            "DockerImageFunction",
            code=lambda_.DockerImageCode.from_image_asset(
                str(SRC / "docker" / "DockerImageFunctionConstruct")
            ),
        )

        # API backed by an asset-hosted definition
        apigateway.SpecRestApi(
            self,
            "SpecRestAPI",
            api_definition=apigateway.ApiDefinition.from_asset(
                str(SRC / "rest-api-definition.yaml")
            ),
        )

        InnerStack(self, "NestedStack")


app = App()
TestStack(app, f"{os.environ['STACK_NAME_PREFIX']}-TestStack")
app.synth()
