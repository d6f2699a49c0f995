import unittest

from mock import Mock, patch
from testfixtures import OutputCapture, Replacer, TempDirectory

from shipfish.core.models import ContainerInstance, HostingInstance, RunningTask
from shipfish.exceptions import NoService
from shipfish.main import ShipfishApp


SHIPFISH_YML = b"""
targets:
  - name: web-prod
    environment: prod
    cluster: prod
    docker_image: example/web
    service_config:
      desired_count: 2
"""


class ShipfishTestApp(ShipfishApp):

    class Meta:
        argv = []
        config_files = []
        config_dirs = []
        exit_on_close = False


class TestDeployController(unittest.TestCase):

    def setUp(self):
        self.dir = TempDirectory()
        self.filename = self.dir.write('shipfish.yml', SHIPFISH_YML)
        self.replacer = Replacer()
        self.orchestrator_class = self.replacer('shipfish.controllers.deploy.DeploymentOrchestrator', Mock())
        self.orchestrator = self.orchestrator_class.return_value
        self.replacer('shipfish.controllers.deploy.click.secho', Mock())
        self.hook_calls = []

    def tearDown(self):
        self.replacer.restore()
        self.dir.cleanup()

    def pre_deploy(self, app, target, operation):
        self.hook_calls.append(('pre_deploy', target.name, operation))

    def post_deploy(self, app, target, operation, success=True, reason=None):
        self.hook_calls.append(('post_deploy', target.name, operation, success))

    def run_app(self, *argv):
        with ShipfishTestApp(argv=['-f', self.filename] + list(argv)) as app:
            app.hook.register('pre_deploy', self.pre_deploy)
            app.hook.register('post_deploy', self.post_deploy)
            app.run()
            return app

    def test_short(self):
        app = self.run_app('short', 'web-prod')
        self.assertEqual(app.exit_code, 0)
        self.orchestrator.short.assert_called_once_with()
        target = self.orchestrator_class.call_args.args[0]
        self.assertEqual(target.service_config, {'desiredCount': 2})
        self.assertEqual(self.hook_calls, [
            ('pre_deploy', 'web-prod', 'short'),
            ('post_deploy', 'web-prod', 'short', True),
        ])

    def test_target_by_environment_with_tag(self):
        self.run_app('full', 'prod', '--tag', '1.2.3')
        self.orchestrator.full.assert_called_once_with()
        self.assertEqual(self.orchestrator_class.call_args.args[0].image, 'example/web:1.2.3')

    def test_rollback_count(self):
        self.run_app('rollback', 'web-prod', '--count', '2')
        self.orchestrator.rollback.assert_called_once_with(count=2)

    def test_scale(self):
        self.run_app('scale', 'web-prod', '4')
        self.orchestrator.scale.assert_called_once_with(4)

    def test_run_passes_command(self):
        self.run_app('run', 'web-prod', 'manage.py', 'check')
        self.assertEqual(self.orchestrator_class.call_args.args[0].command, ['manage.py', 'check'])
        self.orchestrator.run.assert_called_once_with()

    def test_failure_exits_1(self):
        self.orchestrator.short.side_effect = NoService("No service for 'web-prod'!", family='web-prod')
        app = self.run_app('short', 'web-prod')
        self.assertEqual(app.exit_code, 1)
        self.assertEqual(self.hook_calls[-1], ('post_deploy', 'web-prod', 'short', False))

    def test_no_such_target_exits_1(self):
        app = self.run_app('short', 'web-qa')
        self.assertEqual(app.exit_code, 1)
        self.orchestrator_class.assert_not_called()
        self.assertEqual(self.hook_calls, [])

    def test_bash_passes_shell_exit_status_through(self):
        self.orchestrator.shell_exit_code = 130
        app = self.run_app('bash', 'web-prod')
        self.orchestrator.bash.assert_called_once_with()
        self.assertEqual(app.exit_code, 130)

    def test_bash_clean_exit(self):
        self.orchestrator.shell_exit_code = 0
        app = self.run_app('bash', 'web-prod')
        self.assertEqual(app.exit_code, 0)


class TestDeployControllerBadInput(unittest.TestCase):
    """
    These run the real orchestrator against a mock gateway, so that bad
    arguments and bad ssh settings go all the way through to the CLI.
    """

    def setUp(self):
        self.dir = TempDirectory()
        self.replacer = Replacer()
        self.gateway = self.replacer('shipfish.controllers.deploy.ECSClusterGateway', Mock()).return_value
        self.replacer('shipfish.controllers.deploy.click.secho', Mock())

    def tearDown(self):
        self.replacer.restore()
        self.dir.cleanup()

    def run_app(self, yml, *argv):
        filename = self.dir.write('shipfish.yml', yml)
        with OutputCapture() as output:
            with ShipfishTestApp(argv=['-f', filename] + list(argv)) as app:
                app.run()
        return app, output.captured

    def test_rollback_count_zero(self):
        app, output = self.run_app(SHIPFISH_YML, 'rollback', 'web-prod', '--count', '0')
        self.assertEqual(app.exit_code, 1)
        self.assertIn('[rollback] family="web-prod", cluster="prod"', output)
        self.gateway.update_service.assert_not_called()
        self.gateway.deregister_task_definition.assert_not_called()

    def test_scale_negative(self):
        app, output = self.run_app(SHIPFISH_YML, 'scale', 'web-prod', '-1')
        self.assertEqual(app.exit_code, 1)
        self.assertIn('[scale] family="web-prod", cluster="prod"', output)
        self.gateway.update_service.assert_not_called()

    def test_bash_with_unknown_ssh_proxy(self):
        self.gateway.list_task_definitions.return_value = ['arn:aws:ecs:us-west-2:123456789012:task-definition/web-prod:1']
        self.gateway.list_running_tasks.return_value = ['arn:aws:ecs:us-west-2:123456789012:task/prod/abc123']
        self.gateway.describe_task.return_value = RunningTask({
            'taskArn': 'arn:aws:ecs:us-west-2:123456789012:task/prod/abc123',
            'containerInstanceArn': 'arn:ci/1',
        })
        self.gateway.describe_container_instance.return_value = ContainerInstance({
            'containerInstanceArn': 'arn:ci/1',
            'ec2InstanceId': 'i-1',
        })
        self.gateway.describe_hosting_instance.return_value = HostingInstance({
            'InstanceId': 'i-1',
            'PrivateIpAddress': '10.0.0.1',
        })
        yml = SHIPFISH_YML + b"""    ssh:
      proxy: carrier-pigeon
"""
        with patch('shipfish.core.ssh.subprocess.call') as call:
            app, output = self.run_app(yml, 'bash', 'web-prod')
        self.assertEqual(app.exit_code, 1)
        self.assertIn('unknown proxy type "carrier-pigeon"', output)
        call.assert_not_called()
