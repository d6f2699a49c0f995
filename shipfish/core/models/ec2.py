from typing import Dict, Optional

from .abstract import Model


class HostingInstance(Model):
    """
    An EC2 instance hosting the containers of a task.  We only ever look at
    these to find an address we can ssh to.
    """

    @property
    def pk(self) -> str:
        return self.data['InstanceId']

    @property
    def name(self) -> str:
        return self.tags.get('Name', self.pk)

    @property
    def arn(self) -> str:
        raise NotImplementedError('EC2 instances are identified by instance id, not ARN')

    @property
    def tags(self) -> Dict[str, str]:
        return {tag['Key']: tag['Value'] for tag in self.data.get('Tags', [])}

    @property
    def private_ip_address(self) -> Optional[str]:
        return self.data.get('PrivateIpAddress', None) or None

    @property
    def public_ip_address(self) -> Optional[str]:
        return self.data.get('PublicIpAddress', None) or None

    @property
    def ip_address(self) -> Optional[str]:
        """
        Prefer the private address: that's what bastion hosts and VPNs route to.
        """
        return self.private_ip_address or self.public_ip_address
