import unittest

from botocore.exceptions import ClientError, EndpointConnectionError, WaiterError
from mock import Mock
from testfixtures import Replacer, compare

from shipfish.core.gateway import ECSClusterGateway
from shipfish.core.models import TaskDefinition
from shipfish.core.runtime import RunTaskExecutor, RuntimeLocator
from shipfish.exceptions import ConvergenceTimeout, GatewayError


def client_error(code, operation='DescribeServices'):
    return ClientError({'Error': {'Code': code, 'Message': 'it broke'}}, operation)


ARN_PREFIX = 'arn:aws:ecs:us-west-2:123456789012:task-definition/'


class GatewayTestCase(unittest.TestCase):

    def setUp(self):
        self.ecs = Mock()
        self.ec2 = Mock()
        self.logs = Mock()
        self.gateway = ECSClusterGateway(
            max_attempts=3,
            backoff=1.0,
            clients={'ecs': self.ecs, 'ec2': self.ec2, 'logs': self.logs}
        )
        self.replacer = Replacer()
        self.sleep = self.replacer('shipfish.core.gateway.time.sleep', Mock())

    def tearDown(self):
        self.replacer.restore()


class TestECSClusterGateway_retries(GatewayTestCase):

    def test_read_is_retried_on_throttling(self):
        self.ecs.describe_services.side_effect = [
            client_error('ThrottlingException'),
            client_error('ServerException'),
            {'services': []},
        ]
        self.assertIsNone(self.gateway.describe_service('prod', 'web'))
        self.assertEqual(self.ecs.describe_services.call_count, 3)
        compare([c.args[0] for c in self.sleep.call_args_list], [1.0, 2.0])

    def test_read_gives_up_after_max_attempts(self):
        self.ecs.describe_services.side_effect = client_error('ThrottlingException')
        with self.assertRaises(GatewayError) as cm:
            self.gateway.describe_service('prod', 'web')
        self.assertEqual(self.ecs.describe_services.call_count, 3)
        self.assertTrue(cm.exception.retryable)
        self.assertEqual(cm.exception.code, 'ThrottlingException')
        self.assertEqual(cm.exception.family, 'web')
        self.assertEqual(cm.exception.cluster, 'prod')

    def test_logical_failure_is_not_retried(self):
        self.ecs.describe_services.side_effect = client_error('ClusterNotFoundException')
        with self.assertRaises(GatewayError) as cm:
            self.gateway.describe_service('prod', 'web')
        self.assertEqual(self.ecs.describe_services.call_count, 1)
        self.assertFalse(cm.exception.retryable)
        self.sleep.assert_not_called()

    def test_mutation_is_retried_only_when_throttled(self):
        self.ecs.update_service.side_effect = [client_error('ThrottlingException', 'UpdateService'), {}]
        self.gateway.update_service('prod', 'web', {'desiredCount': 2})
        self.assertEqual(self.ecs.update_service.call_count, 2)

    def test_mutation_server_error_is_raised_at_once(self):
        self.ecs.update_service.side_effect = client_error('ServerException', 'UpdateService')
        with self.assertRaises(GatewayError) as cm:
            self.gateway.update_service('prod', 'web', {'desiredCount': 2})
        self.assertEqual(self.ecs.update_service.call_count, 1)
        self.assertTrue(cm.exception.retryable)

    def test_connection_errors(self):
        self.ecs.describe_services.side_effect = [
            EndpointConnectionError(endpoint_url='https://ecs.us-west-2.amazonaws.com'),
            {'services': []},
        ]
        self.assertIsNone(self.gateway.describe_service('prod', 'web'))
        self.ecs.update_service.side_effect = EndpointConnectionError(endpoint_url='https://ecs.us-west-2.amazonaws.com')
        with self.assertRaises(GatewayError):
            self.gateway.update_service('prod', 'web', {})
        self.assertEqual(self.ecs.update_service.call_count, 1)


class TestECSClusterGateway_task_definitions(GatewayTestCase):

    def test_list_filters_other_families_and_paginates(self):
        self.ecs.list_task_definitions.side_effect = [
            {'taskDefinitionArns': [ARN_PREFIX + 'web:3', ARN_PREFIX + 'web-worker:9'], 'nextToken': 'abc'},
            {'taskDefinitionArns': [ARN_PREFIX + 'web:2']},
        ]
        compare(self.gateway.list_task_definitions('web'), [ARN_PREFIX + 'web:3', ARN_PREFIX + 'web:2'])
        compare(self.ecs.list_task_definitions.call_args_list[0].kwargs,
                {'familyPrefix': 'web', 'status': 'ACTIVE', 'sort': 'DESC'})
        self.assertEqual(self.ecs.list_task_definitions.call_args_list[1].kwargs['nextToken'], 'abc')

    def test_latest_and_previous(self):
        self.ecs.list_task_definitions.return_value = {
            'taskDefinitionArns': [ARN_PREFIX + 'web:3', ARN_PREFIX + 'web:2']
        }
        self.ecs.describe_task_definition.side_effect = lambda **kw: {
            'taskDefinition': {'taskDefinitionArn': kw['taskDefinition'], 'family': 'web'},
            'tags': [],
        }
        self.assertEqual(self.gateway.latest_task_definition('web').arn, ARN_PREFIX + 'web:3')
        self.assertEqual(self.gateway.previous_task_definition('web').arn, ARN_PREFIX + 'web:2')
        self.assertIsNone(self.gateway.previous_task_definition('web', count=2))

    def test_latest_with_no_revisions(self):
        self.ecs.list_task_definitions.return_value = {'taskDefinitionArns': []}
        self.assertIsNone(self.gateway.latest_task_definition('web'))
        self.ecs.describe_task_definition.assert_not_called()

    def test_register(self):
        self.ecs.register_task_definition.return_value = {
            'taskDefinition': {'taskDefinitionArn': ARN_PREFIX + 'web:4', 'family': 'web', 'revision': 4}
        }
        revision = self.gateway.register_task_definition({'family': 'web', 'containerDefinitions': []})
        self.assertEqual(revision.family_revision, 'web:4')
        self.ecs.register_task_definition.assert_called_once_with(family='web', containerDefinitions=[])


class TestECSClusterGateway_services(GatewayTestCase):

    def test_inactive_service_counts_as_absent(self):
        self.ecs.describe_services.return_value = {'services': [{'serviceName': 'web', 'status': 'INACTIVE'}]}
        self.assertIsNone(self.gateway.describe_service('prod', 'web'))

    def test_describe_service(self):
        self.ecs.describe_services.return_value = {
            'services': [{'serviceName': 'web', 'status': 'ACTIVE', 'taskDefinition': ARN_PREFIX + 'web:1'}]
        }
        service = self.gateway.describe_service('prod', 'web')
        self.assertEqual(service.pk, 'prod:web')
        self.ecs.describe_services.assert_called_once_with(cluster='prod', services=['web'])

    def test_update_service_passes_only_updatable_keys(self):
        self.ecs.update_service.return_value = {}
        self.gateway.update_service(
            'prod', 'web',
            {'desiredCount': 2, 'launchType': 'EC2', 'loadBalancers': []},
            task_definition=ARN_PREFIX + 'web:2'
        )
        self.ecs.update_service.assert_called_once_with(
            cluster='prod', service='web', desiredCount=2, loadBalancers=[], taskDefinition=ARN_PREFIX + 'web:2'
        )

    def test_create_service(self):
        self.ecs.create_service.return_value = {'service': {'serviceName': 'web', 'taskDefinition': 'x'}}
        self.gateway.create_service('prod', 'web', {'desiredCount': 2}, ARN_PREFIX + 'web:1')
        self.ecs.create_service.assert_called_once_with(
            desiredCount=2, cluster='prod', serviceName='web', taskDefinition=ARN_PREFIX + 'web:1'
        )

    def test_wait_timeout_is_convergence_timeout(self):
        waiter = Mock()
        waiter.wait.side_effect = WaiterError(name='ServicesStable', reason='Max attempts exceeded', last_response={})
        self.replacer('shipfish.core.gateway.get_hooked_waiter', Mock(return_value=waiter))
        with self.assertRaises(ConvergenceTimeout) as cm:
            self.gateway.wait_for_steady_state('prod', 'web', 60)
        self.assertIn('already applied', str(cm.exception))
        kwargs = waiter.wait.call_args.kwargs
        self.assertEqual(kwargs['cluster'], 'prod')
        self.assertEqual(kwargs['services'], ['web'])
        compare(kwargs['WaiterConfig'], {'Delay': 10, 'MaxAttempts': 6})
        self.assertIn('ThrottlingException', kwargs['WaiterRetryableErrors'])


class TestECSClusterGateway_tasks(GatewayTestCase):

    def test_run_task_with_no_tasks_started(self):
        self.ecs.run_task.return_value = {'tasks': [], 'failures': [{'arn': 'x', 'reason': 'RESOURCE:MEMORY'}]}
        with self.assertRaises(GatewayError) as cm:
            self.gateway.run_task('prod', {'taskDefinition': ARN_PREFIX + 'web:1'})
        self.assertIn('RESOURCE:MEMORY', str(cm.exception))

    def test_describe_hosting_instance(self):
        self.ec2.describe_instances.return_value = {
            'Reservations': [{'Instances': [{'InstanceId': 'i-1', 'PrivateIpAddress': '10.0.0.1'}]}]
        }
        instance = self.gateway.describe_hosting_instance('i-1')
        self.assertEqual(instance.ip_address, '10.0.0.1')
        self.ec2.describe_instances.assert_called_once_with(InstanceIds=['i-1'])

    def test_fetch_task_logs(self):
        self.ecs.describe_tasks.return_value = {
            'tasks': [{'taskArn': 'arn:aws:ecs:us-west-2:123456789012:task/prod/abc123',
                       'taskDefinitionArn': ARN_PREFIX + 'web:1'}]
        }
        self.ecs.describe_task_definition.return_value = {'taskDefinition': {
            'taskDefinitionArn': ARN_PREFIX + 'web:1',
            'family': 'web',
            'containerDefinitions': [
                {'name': 'web', 'logConfiguration': {'logDriver': 'awslogs', 'options': {
                    'awslogs-group': 'web-logs', 'awslogs-stream-prefix': 'web'
                }}},
                {'name': 'sidecar', 'logConfiguration': {'logDriver': 'syslog'}},
            ]
        }}
        self.logs.get_log_events.side_effect = [
            {'events': [{'message': 'line 1'}, {'message': 'line 2'}], 'nextForwardToken': 't1'},
            {'events': [], 'nextForwardToken': 't1'},
        ]
        text = self.gateway.fetch_task_logs('prod', 'arn:aws:ecs:us-west-2:123456789012:task/prod/abc123')
        self.assertEqual(text, 'line 1\nline 2')
        first = self.logs.get_log_events.call_args_list[0].kwargs
        self.assertEqual(first['logGroupName'], 'web-logs')
        self.assertEqual(first['logStreamName'], 'web/web/abc123')


class TestECSClusterGateway_error_labels(GatewayTestCase):

    TASK_ARN = 'arn:aws:ecs:us-west-2:123456789012:task/prod/abc123'

    def test_locating_a_host_names_the_family(self):
        self.ecs.list_tasks.return_value = {'taskArns': [self.TASK_ARN]}
        self.ecs.describe_tasks.return_value = {
            'tasks': [{'taskArn': self.TASK_ARN, 'containerInstanceArn': 'arn:ci/1'}]
        }
        self.ecs.describe_container_instances.side_effect = client_error(
            'AccessDeniedException', 'DescribeContainerInstances'
        )
        with self.assertRaises(GatewayError) as cm:
            RuntimeLocator(self.gateway).resolve_host('prod', 'web-prod')
        self.assertTrue(str(cm.exception).startswith('[locate runtime] family="web-prod", cluster="prod": '))

    def test_missing_hosting_instance_names_the_family(self):
        self.ec2.describe_instances.return_value = {'Reservations': []}
        with self.assertRaises(GatewayError) as cm:
            self.gateway.describe_hosting_instance('i-1', family='web-prod', cluster='prod')
        self.assertIn('family="web-prod", cluster="prod"', str(cm.exception))

    def test_task_wait_timeout_names_the_family(self):
        self.ecs.run_task.return_value = {
            'tasks': [{'taskArn': self.TASK_ARN, 'taskDefinitionArn': ARN_PREFIX + 'web-prod:1'}]
        }
        waiter = Mock()
        waiter.wait.side_effect = WaiterError(name='TasksStopped', reason='Max attempts exceeded', last_response={})
        self.replacer('shipfish.core.gateway.get_hooked_waiter', Mock(return_value=waiter))
        revision = TaskDefinition({'taskDefinitionArn': ARN_PREFIX + 'web-prod:1', 'family': 'web-prod'})
        executor = RunTaskExecutor(self.gateway, log_sink=Mock(), timeout=60)
        with self.assertRaises(ConvergenceTimeout) as cm:
            executor.run('prod', revision)
        self.assertTrue(str(cm.exception).startswith('[run task] family="web-prod", cluster="prod": gave up'))
        self.assertIn('may still be running', str(cm.exception))

    def test_log_fetch_failure_names_the_family(self):
        self.ecs.describe_tasks.return_value = {
            'tasks': [{'taskArn': self.TASK_ARN, 'taskDefinitionArn': ARN_PREFIX + 'web-prod:1'}]
        }
        self.ecs.describe_task_definition.return_value = {'taskDefinition': {
            'taskDefinitionArn': ARN_PREFIX + 'web-prod:1',
            'family': 'web-prod',
            'containerDefinitions': [
                {'name': 'web', 'logConfiguration': {'logDriver': 'awslogs', 'options': {
                    'awslogs-group': 'web-logs', 'awslogs-stream-prefix': 'web'
                }}},
            ]
        }}
        self.logs.get_log_events.side_effect = client_error('AccessDeniedException', 'GetLogEvents')
        with self.assertRaises(GatewayError) as cm:
            self.gateway.fetch_task_logs('prod', self.TASK_ARN, family='web-prod')
        self.assertEqual(cm.exception.step, 'fetch logs')
        self.assertIn('family="web-prod", cluster="prod"', str(cm.exception))
