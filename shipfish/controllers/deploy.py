from typing import Callable, Dict, List, Tuple

from cement import Controller, ex
import click
from tabulate import tabulate

from shipfish.core.gateway import ECSClusterGateway
from shipfish.core.orchestrator import DeploymentOrchestrator
from shipfish.core.runtime import RunTaskExecutor
from shipfish.core.ssh import SSHShellLauncher
from shipfish.core.target import Target
from shipfish.core.waiters.hooks import ECSDeploymentStatusWaiterHook, ECSTaskStatusWaiterHook
from shipfish.exceptions import DeploymentError

from .utils import handle_deploy_exceptions


#: The arguments every Deploy command takes
TARGET_ARGUMENTS: List[Tuple[List[str], Dict]] = [
    (['target'], {'help': 'The name (or environment) of a target in the targets: section of shipfish.yml'}),
    (
        ['--tag'],
        {
            'help': 'Deploy this tag of the target\'s docker_image to every container',
            'action': 'store',
            'default': None,
            'dest': 'tag'
        }
    ),
]


class Deploy(Controller):
    """
    The commands that act on one target from shipfish.yml.  Every command that
    changes anything in AWS runs the ``pre_deploy`` and ``post_deploy`` hooks
    around itself.
    """

    class Meta:
        label = 'deploy'
        description = 'Deploy and manage targets from shipfish.yml'
        stacked_on = 'base'
        stacked_type = 'embedded'

    def target(self) -> Target:
        config = self.app.shipfish_config
        return Target.new(
            config.get_target(self.app.pargs.target),
            settings=config.settings,
            tag=getattr(self.app.pargs, 'tag', None),
            command=getattr(self.app.pargs, 'command', None),
        )

    def orchestrator(self, target: Target) -> DeploymentOrchestrator:
        gateway = ECSClusterGateway(
            poll_interval=target.poll_interval,
            service_waiter_hooks=[ECSDeploymentStatusWaiterHook],
            task_waiter_hooks=[ECSTaskStatusWaiterHook],
        )
        return DeploymentOrchestrator(
            target,
            gateway,
            executor=RunTaskExecutor(gateway, log_sink=click.echo, timeout=target.timeout),
            shell_launcher=SSHShellLauncher(target.ssh, verbose=self.app.debug),
        )

    def mutate(self, operation: str, action: Callable[[DeploymentOrchestrator], object]) -> DeploymentOrchestrator:
        """
        Run ``action`` against a fresh orchestrator for our target, wrapped in
        our ``pre_deploy`` and ``post_deploy`` hooks.
        """
        target = self.target()
        orchestrator = self.orchestrator(target)
        for _ in self.app.hook.run('pre_deploy', self.app, target, operation):
            pass
        try:
            action(orchestrator)
        except DeploymentError as e:
            for _ in self.app.hook.run('post_deploy', self.app, target, operation, success=False, reason=str(e)):
                pass
            raise
        for _ in self.app.hook.run('post_deploy', self.app, target, operation):
            pass
        return orchestrator

    @ex(
        help='Create the task definition and service for a target if they do not exist, then run its '
             'bootstrap_commands',
        arguments=TARGET_ARGUMENTS
    )
    @handle_deploy_exceptions
    def bootstrap(self):
        self.mutate('bootstrap', lambda o: o.bootstrap())
        self.app.print(click.style(f'\n\nBootstrapped {self.app.pargs.target}.', fg='green'))

    @ex(
        help='Register a new task definition if needed and point the service at it',
        arguments=TARGET_ARGUMENTS
    )
    @handle_deploy_exceptions
    def short(self):
        self.mutate('short', lambda o: o.short())
        self.app.print(click.style(f'\n\nDeployed {self.app.pargs.target}.', fg='green'))

    @ex(
        help='Run the predeploy_commands for a target, then do a short deploy',
        arguments=TARGET_ARGUMENTS
    )
    @handle_deploy_exceptions
    def full(self):
        self.mutate('full', lambda o: o.full())
        self.app.print(click.style(f'\n\nDeployed {self.app.pargs.target}.', fg='green'))

    @ex(
        help='Point the service back at an older task definition and deregister the newer ones',
        arguments=TARGET_ARGUMENTS + [
            (
                ['--count'],
                {
                    'help': 'Roll back this many revisions',
                    'type': int,
                    'default': 1,
                    'dest': 'count'
                }
            ),
        ]
    )
    @handle_deploy_exceptions
    def rollback(self):
        count = self.app.pargs.count
        self.mutate('rollback', lambda o: o.rollback(count=count))
        self.app.print(click.style(f'\n\nRolled {self.app.pargs.target} back {count} revision(s).', fg='green'))

    @ex(
        help='Change the number of tasks for a target\'s service',
        arguments=TARGET_ARGUMENTS + [
            (['count'], {'help': 'Set the number of tasks for the service to this', 'type': int}),
        ]
    )
    @handle_deploy_exceptions
    def scale(self):
        count = self.app.pargs.count
        click.secho(f'Updating desiredCount to "{count}" on {self.app.pargs.target}')
        self.mutate('scale', lambda o: o.scale(count))
        self.app.print(click.style(f'\n\nScaled {self.app.pargs.target} to {count} tasks.', fg='green'))

    @ex(
        help='Show the latest task definition, the service deployments and the hosts running a target',
        arguments=TARGET_ARGUMENTS
    )
    @handle_deploy_exceptions
    def status(self):
        target = self.target()
        status = self.orchestrator(target).status()
        lines = []
        if status.task_definition:
            lines.append(click.style('Latest task definition: ', fg='cyan') + status.task_definition.family_revision)
            lines.append(click.style('Images: ', fg='cyan') + ', '.join(status.task_definition.images))
        else:
            lines.append(click.style('No task definition registered', fg='red'))
        if status.service:
            lines.append(click.style('Service: ', fg='cyan') + status.service.pk)
            lines.append(click.style('Steady: ', fg='cyan') + ('yes' if status.service.steady else 'no'))
            rows = [
                [d['status'], d['taskDefinition'].rsplit('/', 1)[-1], d['desiredCount'], d['pendingCount'],
                 d['runningCount']]
                for d in status.service.deployments
            ]
            lines.append('')
            lines.append(tabulate(rows, headers=['Status', 'Task def', 'Desired', 'Pending', 'Running']))
            lines.append('')
            lines.append(click.style('Hosts: ', fg='cyan') + ', '.join(
                f'{h.host_id} ({h.ip})' for h in status.hosts
            ))
            if status.service.events:
                lines.append('')
                lines.append(click.style('Recent events:', fg='cyan'))
                # ECS lists service events newest first
                for event in status.service.events[:5]:
                    lines.append(f"  {event['createdAt']:%Y-%m-%d %H:%M:%S}  {event['message']}")
        else:
            lines.append(click.style(f'No service in cluster {target.cluster}', fg='red'))
        self.app.print('\n'.join(lines))

    @ex(
        help='Run the latest task definition of a target as a one-off task',
        arguments=TARGET_ARGUMENTS + [
            (['command'], {'help': 'The command to run instead of the container\'s default', 'nargs': '*'}),
        ]
    )
    @handle_deploy_exceptions
    def run(self):
        self.mutate('run', lambda o: o.run())
        self.app.print(click.style('\n\nTask succeeded.', fg='green'))

    @ex(
        help='Open an interactive shell in a running container of a target',
        arguments=TARGET_ARGUMENTS
    )
    @handle_deploy_exceptions
    def bash(self):
        target = self.target()
        orchestrator = self.orchestrator(target)
        orchestrator.bash()
        # Pass the remote shell's exit status through to our own
        if orchestrator.shell_exit_code:
            self.app.exit_code = orchestrator.shell_exit_code
