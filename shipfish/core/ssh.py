import logging
import subprocess
from typing import Any, Dict, Optional

import shellescape

from shipfish.core.runtime import ShellRequest
from shipfish.exceptions import ConfigProcessingFailed


logger = logging.getLogger(__name__)


class AbstractSSHProvider:
    """
    Build the shell commands we use to ssh to the host running a container.

    Args:
        user: the user to ssh in as

    Keyword Args:
        verbose: if ``True``, use verbose flags for the ssh command
    """

    def __init__(self, user: str = 'ec2-user', verbose: bool = False) -> None:
        self.user = user
        #: If the caller specified ``verbose=True``, we send SSH the ``-vv`` flag.
        self.ssh_verbose_flag = '-vv' if verbose else ''

    def ssh(self, ip: str, command: str) -> str:
        """
        Return a shell command that runs ``command`` on the host at ``ip`` with
        a tty attached.
        """
        raise NotImplementedError

    def docker_exec(self, container_filter: str) -> str:
        """
        Return a shell command that starts an interactive ``bash`` in the most
        recent container on the host whose name matches ``container_filter``.
        """
        return 'docker exec -i -t `docker ps -n 1 --quiet --filter name={}` bash'.format(container_filter)

    def shell(self, request: ShellRequest) -> str:
        return self.ssh(request.address.ip, self.docker_exec(request.container_filter))


class DirectSSHProvider(AbstractSSHProvider):
    """
    ssh straight to the host: we need to be able to route to its address.
    """

    def ssh(self, ip: str, command: str) -> str:
        flags = '{} '.format(self.ssh_verbose_flag) if self.ssh_verbose_flag else ''
        return 'ssh {}-o StrictHostKeyChecking=no -t -t {}@{} {}'.format(
            flags, self.user, ip, shellescape.quote(command)
        )


class BastionSSHProvider(AbstractSSHProvider):
    """
    ssh to a bastion host first, and from there to the host.

    Args:
        bastion: the hostname or IP address of the bastion host
    """

    def __init__(self, bastion: str, user: str = 'ec2-user', verbose: bool = False) -> None:
        super().__init__(user=user, verbose=verbose)
        if not bastion:
            raise ConfigProcessingFailed('ssh: proxy is "bastion" but no bastion host is configured in shipfish.yml')
        self.bastion = bastion

    def ssh(self, ip: str, command: str) -> str:
        flags = '{} '.format(self.ssh_verbose_flag) if self.ssh_verbose_flag else ''
        hop2 = 'ssh {flags}-o StrictHostKeyChecking=no -t -t {user}@{ip} {command}'.format(
            flags=flags,
            user=self.user,
            ip=ip,
            command=shellescape.quote(command)
        )
        return 'ssh {flags}-o StrictHostKeyChecking=no -A -t -t {user}@{bastion} {hop2}'.format(
            flags=flags,
            user=self.user,
            bastion=self.bastion,
            hop2=shellescape.quote(hop2)
        )


class SSHShellLauncher:
    """
    Open an interactive shell in a live container by ssh'ing to its host and
    running ``docker exec`` there.  We block until the operator ends the
    session.

    ``ssh_config`` is the ``ssh:`` section of shipfish.yml::

        ssh:
          user: ec2-user
          proxy: direct          # or "bastion"
          bastion: bastion.example.com

    Keyword Args:
        ssh_config: our ssh settings
        verbose: if ``True``, use verbose flags for the ssh command
    """

    providers = {
        'direct': DirectSSHProvider,
        'bastion': BastionSSHProvider,
    }

    def __init__(self, ssh_config: Optional[Dict[str, Any]] = None, verbose: bool = False) -> None:
        self.ssh_config = ssh_config if ssh_config else {}
        self.verbose = verbose

    @property
    def provider(self) -> AbstractSSHProvider:
        proxy = self.ssh_config.get('proxy', 'direct')
        if proxy not in self.providers:
            raise ConfigProcessingFailed(
                f'ssh: unknown proxy type "{proxy}" in shipfish.yml: use one of {", ".join(sorted(self.providers))}'
            )
        kwargs: Dict[str, Any] = {
            'user': self.ssh_config.get('user', 'ec2-user'),
            'verbose': self.verbose,
        }
        if proxy == 'bastion':
            kwargs['bastion'] = self.ssh_config.get('bastion', None)
        return self.providers[proxy](**kwargs)

    def command(self, request: ShellRequest) -> str:
        return self.provider.shell(request)

    def open_shell(self, request: ShellRequest) -> int:
        cmd = self.command(request)
        logger.debug('opening shell: %s', cmd)
        return subprocess.call(cmd, shell=True)
