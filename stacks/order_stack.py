"""CDK stack wiring the order API, event bus, workflow and handlers."""

import os

import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_apigatewayv2 as apigwv2,
    aws_apigatewayv2_integrations as apigwv2_integrations,
    aws_dynamodb as dynamodb,
    aws_events as events,
    aws_events_targets as targets,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_lambda_destinations as destinations,
    aws_logs as logs,
    aws_sns as sns,
    aws_sns_subscriptions as subscriptions,
    aws_sqs as sqs,
    aws_stepfunctions as sfn,
    aws_stepfunctions_tasks as tasks,
    Duration,
    RemovalPolicy,
    CfnOutput,
)

from stacks.dependencies import apply_dependencies

LAMBDA_ASSET_DIR = os.path.abspath(
    os.path.join(os.path.dirname(__file__), os.pardir, "lambdas")
)

# Lambda configuration constants
HANDLER_TIMEOUT_SECONDS = 30
HANDLER_MEMORY_MB = 256

# Workflow configuration
WORKFLOW_TIMEOUT_MINUTES = 5
FAILURE_MESSAGE = "Task started by Step Functions failed."
SUCCESS_MESSAGE = "Callback received. Task started by Step Functions succeeded."

# Event routing configuration
EVENT_SOURCE = "apigateway.amazonaws.com"
EVENT_DETAIL_TYPE = "OrderOperation"
TARGET_RETRY_ATTEMPTS = 2
TARGET_MAX_EVENT_AGE_HOURS = 2

# HTTP API configuration
INTEGRATION_TIMEOUT_MILLIS = 30000
API_URL_FALLBACK = "Something went wrong with the deploy"

# Logging configuration
LOG_RETENTION_DAYS = logs.RetentionDays.TWO_WEEKS

# DLQ configuration
DLQ_RETENTION_DAYS = 14


class OrderStack(cdk.Stack):
    """Stack routing order operations from an HTTP API through EventBridge."""

    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        """Initialise the order operations stack.

        Args:
            scope: The scope in which this stack is defined.
            construct_id: The scoped construct ID.
            **kwargs: Additional stack properties.
        """
        super().__init__(scope, construct_id, **kwargs)

        # Get optional resource suffix for integration tests (makes names unique)
        resource_suffix = self.node.try_get_context("resource_suffix") or ""
        name_suffix = f"-{resource_suffix}" if resource_suffix else ""

        # Handlers share one asset; each gets its own log group
        self.write_function = self._handler_function(
            "WriteLambdaFunction",
            function_name=f"order-write{name_suffix}",
            handler="write_order.handler",
        )
        self.read_function = self._handler_function(
            "ReadLambdaFunction",
            function_name=f"order-read{name_suffix}",
            handler="read_order.handler",
        )

        # DynamoDB order table, deleted together with the stack
        self.orders_table = dynamodb.Table(
            self,
            "OrderTable",
            table_name=f"order{name_suffix}",
            partition_key=dynamodb.Attribute(
                name="orderid",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            removal_policy=RemovalPolicy.DESTROY,
        )

        for function in (self.write_function, self.read_function):
            function.add_environment("TABLE_NAME", self.orders_table.table_name)

        self.orders_table.grant_read_write_data(self.write_function)
        self.orders_table.grant_read_data(self.read_function)

        # SNS topic for workflow outcome notifications
        self.order_confirmation_topic = sns.Topic(
            self,
            "OrderConfirmationTopic",
            topic_name=f"orderConfirmation{name_suffix}",
            display_name="Order Confirmation Topic",
            fifo=False,
        )

        email_address = self.node.try_get_context("emailAddress")
        if email_address:
            self.order_confirmation_topic.add_subscription(
                subscriptions.EmailSubscription(email_address)
            )
        else:
            cdk.Annotations.of(self).add_warning_v2(
                "order-stack:missing-email-address",
                "No email address provided in cdk.json. Skipping email subscription.",
            )

        # Step Functions workflow: invoke the write handler and wait for its callback
        state_machine_name = f"order-processing{name_suffix}"

        invoke = tasks.LambdaInvoke(
            self,
            "Invoke",
            lambda_function=self.write_function,
            integration_pattern=sfn.IntegrationPattern.WAIT_FOR_TASK_TOKEN,
            payload=sfn.TaskInput.from_object(
                {
                    "Payload": sfn.JsonPath.entire_payload,
                    "TaskToken": sfn.JsonPath.task_token,
                }
            ),
            retry_on_service_exceptions=True,
        )

        notify_failure = tasks.SnsPublish(
            self,
            "NotifyFailure",
            topic=self.order_confirmation_topic,
            message=sfn.TaskInput.from_text(FAILURE_MESSAGE),
        )

        notify_success = tasks.SnsPublish(
            self,
            "NotifySuccess",
            topic=self.order_confirmation_topic,
            message=sfn.TaskInput.from_text(SUCCESS_MESSAGE),
        )

        definition = invoke.add_catch(notify_failure).next(notify_success)

        state_machine_log_group = logs.LogGroup(
            self,
            "OrderProcessingLogGroup",
            log_group_name=f"/aws/vendedlogs/states/{state_machine_name}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        self.state_machine = sfn.StateMachine(
            self,
            "OrderProcessingStateMachine",
            state_machine_name=state_machine_name,
            definition_body=sfn.DefinitionBody.from_chainable(definition),
            timeout=Duration.minutes(WORKFLOW_TIMEOUT_MINUTES),
            logs=sfn.LogOptions(
                destination=state_machine_log_group,
                level=sfn.LogLevel.ERROR,
            ),
        )

        # Callback permissions reference the state machine by name, not by ARN token
        self.write_function.add_to_role_policy(
            iam.PolicyStatement(
                actions=[
                    "states:SendTaskSuccess",
                    "states:SendTaskFailure",
                    "states:SendTaskHeartbeat",
                ],
                resources=[
                    self.format_arn(
                        service="states",
                        resource="stateMachine",
                        resource_name=state_machine_name,
                        arn_format=cdk.ArnFormat.COLON_RESOURCE_NAME,
                    )
                ],
            )
        )

        # EventBridge bus with create/update routing rules
        self.order_event_bus = events.EventBus(
            self,
            "OrderEventBus",
            event_bus_name=f"orders{name_suffix}",
        )

        self.routing_dlq = sqs.Queue(
            self,
            "RoutingDLQ",
            queue_name=f"order-routing-dlq{name_suffix}",
            encryption=sqs.QueueEncryption.SQS_MANAGED,
            retention_period=Duration.days(DLQ_RETENTION_DAYS),
        )

        # Errors raised inside the write handler on async (rule) invocations
        self.write_function.configure_async_invoke(
            on_failure=destinations.SqsDestination(self.routing_dlq),
            retry_attempts=TARGET_RETRY_ATTEMPTS,
            max_event_age=Duration.hours(TARGET_MAX_EVENT_AGE_HOURS),
        )

        self.new_order_rule = self._operation_rule(
            "NewOrderRule", rule_name=f"newOrder{name_suffix}", operation="create"
        )
        self.update_order_rule = self._operation_rule(
            "UpdateOrderRule", rule_name=f"updateOrder{name_suffix}", operation="update"
        )

        # Creates go through the workflow; updates skip it and its notification
        self.new_order_rule.add_target(
            targets.SfnStateMachine(
                self.state_machine,
                dead_letter_queue=self.routing_dlq,
                retry_attempts=TARGET_RETRY_ATTEMPTS,
                max_event_age=Duration.hours(TARGET_MAX_EVENT_AGE_HOURS),
            )
        )
        self.update_order_rule.add_target(
            targets.LambdaFunction(
                self.write_function,
                dead_letter_queue=self.routing_dlq,
                retry_attempts=TARGET_RETRY_ATTEMPTS,
                max_event_age=Duration.hours(TARGET_MAX_EVENT_AGE_HOURS),
            )
        )

        # HTTP API: GET proxies to the read handler, POSTs publish straight to the bus
        self.http_api = apigwv2.HttpApi(
            self,
            "OrdersApi",
            api_name=f"Orders API{name_suffix}",
            create_default_stage=True,
        )

        self.http_api.add_routes(
            path="/get",
            methods=[apigwv2.HttpMethod.GET],
            integration=apigwv2_integrations.HttpLambdaIntegration(
                "GetLambdaIntegration", self.read_function
            ),
        )

        integration_role = iam.Role(
            self,
            "EventBridgeIntegrationRole",
            assumed_by=iam.ServicePrincipal("apigateway.amazonaws.com"),
        )
        self.order_event_bus.grant_put_events_to(integration_role)

        self.event_bridge_integration = apigwv2.CfnIntegration(
            self,
            "EventBridgeIntegration",
            api_id=self.http_api.api_id,
            integration_type="AWS_PROXY",
            integration_subtype="EventBridge-PutEvents",
            credentials_arn=integration_role.role_arn,
            request_parameters={
                "Source": EVENT_SOURCE,
                "DetailType": EVENT_DETAIL_TYPE,
                "Detail": "$request.body",
                "EventBusName": self.order_event_bus.event_bus_name,
            },
            payload_format_version="1.0",
            timeout_in_millis=INTEGRATION_TIMEOUT_MILLIS,
        )

        for route_id, route_key in (
            ("CreateOrderRoute", "POST /create"),
            ("UpdateOrderRoute", "POST /update"),
        ):
            apigwv2.CfnRoute(
                self,
                route_id,
                api_id=self.http_api.api_id,
                route_key=route_key,
                target=f"integrations/{self.event_bridge_integration.ref}",
            )

        # Explicit ordering edges
        apply_dependencies(
            {
                self.state_machine: [self.write_function],
                self.new_order_rule: [self.state_machine],
                self.update_order_rule: [self.write_function],
                self.event_bridge_integration: [integration_role],
            }
        )

        # Stack outputs
        CfnOutput(
            self,
            "HttpApiUrl",
            value=self.http_api.url or API_URL_FALLBACK,
            description="HTTP API URL",
        )

    def _handler_function(
        self, construct_id: str, function_name: str, handler: str
    ) -> lambda_.Function:
        """Create a handler function from the shared asset with its own log group."""
        log_group = logs.LogGroup(
            self,
            f"{construct_id}LogGroup",
            log_group_name=f"/aws/lambda/{function_name}",
            retention=LOG_RETENTION_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        return lambda_.Function(
            self,
            construct_id,
            function_name=function_name,
            runtime=lambda_.Runtime.PYTHON_3_12,
            architecture=lambda_.Architecture.ARM_64,
            handler=handler,
            code=lambda_.Code.from_asset(LAMBDA_ASSET_DIR),
            timeout=Duration.seconds(HANDLER_TIMEOUT_SECONDS),
            memory_size=HANDLER_MEMORY_MB,
            log_group=log_group,
        )

    def _operation_rule(self, construct_id: str, rule_name: str, operation: str) -> events.Rule:
        """Create a rule on the order bus matching one detail.operation value."""
        return events.Rule(
            self,
            construct_id,
            event_bus=self.order_event_bus,
            rule_name=rule_name,
            event_pattern=events.EventPattern(
                source=[EVENT_SOURCE],
                detail={"operation": [operation]},
            ),
        )
