from datetime import datetime
from textwrap import wrap

import click
from tabulate import tabulate
from tzlocal import get_localzone

from shipfish.core.utils import family_revision

from .abstract import AbstractWaiterHook


class ECSDeploymentStatusWaiterHook(AbstractWaiterHook):
    """
    Print the deployments and new service events on each iteration of the
    ``services_stable`` waiter.  The waiter's own ``describe_services``
    response has everything we need, so we make no extra AWS calls here.
    """

    def __init__(self) -> None:
        self.our_timezone = get_localzone()
        self.start = datetime.now(tz=self.our_timezone)
        self.timestamp = self.start

    def display_deployments(self, deployments):
        rows = []
        for d in deployments:
            if d['status'] == 'PRIMARY':
                fg = 'green'
            elif d['status'] == 'ACTIVE':
                fg = 'yellow'
            else:
                fg = 'white'
            rows.append([
                click.style(d['status'], fg=fg),
                click.style(family_revision(d['taskDefinition']), fg=fg),
                click.style(str(d['desiredCount']), fg=fg),
                click.style(str(d['pendingCount']), fg=fg),
                click.style(str(d['runningCount']), fg=fg)
            ])
        click.secho(tabulate(rows, headers=['Status', 'Task def', 'Desired', 'Pending', 'Running']))

    def display_events(self, events):
        rows = []
        for e in sorted(events, key=lambda x: x['createdAt'], reverse=True):
            if e['createdAt'] < self.start:
                break
            fg = 'white' if e['createdAt'] < self.timestamp else 'yellow'
            rows.append([
                click.style(e['createdAt'].strftime('%Y-%m-%d %H:%M:%S'), fg=fg),
                click.style('\n'.join(wrap(e['message'], 80)), fg=fg)
            ])
        click.secho(tabulate(rows, headers=['Timestamp', 'Message']))

    def waiting(self, status, response, num_attempts, **kwargs):
        if not response.get('services'):
            return
        service = response['services'][0]
        click.secho('\n\nDeployment status:', fg='cyan')
        click.secho('------------------\n', fg='cyan')
        self.display_deployments(service.get('deployments', []))
        click.secho('\n\nService events:', fg='cyan')
        click.secho('---------------\n', fg='cyan')
        self.display_events(service.get('events', []))
        self.timestamp = datetime.now(tz=self.our_timezone)
        click.secho('\n')
        self.mark(status, response, num_attempts, **kwargs)

    def success(self, status, response, num_attempts, **kwargs):
        click.secho('\n\nService is stable!', fg='green')

    def failure(self, status, response, num_attempts, **kwargs):
        click.secho('\n\nService failed to stabilize!', fg='red')
    error = failure

    def timeout(self, status, response, num_attempts, **kwargs):
        click.secho('\n\nTimed out waiting for the service to stabilize!\n\n', fg='red')
        click.secho(
            'NOTE: this does not necessarily mean your deployment failed: check the AWS console to be sure.'
        )


class ECSTaskStatusWaiterHook(AbstractWaiterHook):
    """
    Print the status of our tasks on each iteration of the ``tasks_stopped`` waiter.
    """

    def rows(self, response, stopped=False):
        table = []
        for i, task in enumerate(response.get('tasks', [])):
            row = [i, task['taskArn'].rsplit('/', 1)[-1], task.get('lastStatus', 'UNKNOWN')]
            if stopped:
                row.append(task.get('stopCode', ''))
                stopped_at = task.get('stoppedAt', None)
                row.append(stopped_at.strftime('%Y-%m-%d %H:%M:%S') if stopped_at else '')
            else:
                started_at = task.get('startedAt', None)
                row.append(started_at.strftime('%Y-%m-%d %H:%M:%S') if started_at else 'Not Started')
            table.append(row)
        return table

    def waiting(self, status, response, num_attempts, **kwargs):
        click.echo()
        click.secho(tabulate(self.rows(response), headers=['#', 'ID', 'Status', 'Started']))
        self.mark(status, response, num_attempts, **kwargs)

    def success(self, status, response, num_attempts, **kwargs):
        click.secho('\n\nFinal Task status:', fg='cyan')
        click.secho('-----------------\n', fg='cyan')
        click.secho(tabulate(self.rows(response, stopped=True), headers=['#', 'ID', 'Status', 'Stop Code', 'Stopped']))
        click.echo()
    failure = success
    error = success

    def timeout(self, status, response, num_attempts, **kwargs):
        click.secho('\n\nTimed out waiting for the tasks to finish!\n\n', fg='red')
