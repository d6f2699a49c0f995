import os
from typing import Dict, Any, Optional, cast

import boto3
import yaml

from shipfish.exceptions import ConfigProcessingFailed


boto3_session: Optional[boto3.session.Session] = None


class AWSSessionBuilder:
    """
    Build a boto3 ``Session`` from the ``aws:`` section of our shipfish.yml::

        aws:
          profile: my-profile
          region: us-west-2
          allowed_account_ids:
            - '123456789012'

    With no ``aws:`` section we leave everything up to the normal AWS
    credentials resolution.
    """

    class NoSuchAWSProfile(ConfigProcessingFailed):
        """
        The AWS profile named in shipfish.yml does not exist in ``~/.aws/config``.
        """
        pass

    class ForbiddenAWSAccountId(ConfigProcessingFailed):
        pass

    def load_aws_section(self, filename: str) -> Dict[str, Any]:
        """
        Read the ``aws:`` section out of our shipfish.yml file.  A missing file
        is not an error here: some commands run without one.

        Args:
            filename: the path to our shipfish.yml file

        Returns:
            The raw ``aws:`` section, or ``{}``.
        """
        if not os.path.exists(filename):
            return {}
        if not os.access(filename, os.R_OK):
            raise ConfigProcessingFailed(f"shipfish config file '{filename}' exists but is not readable")
        with open(filename, encoding='utf-8') as f:
            data = yaml.load(f, Loader=yaml.FullLoader)
        if not data:
            return {}
        return data.get('aws', {}) or {}

    def new(self, filename: str, use_aws_section: bool = True) -> boto3.session.Session:
        """
        Build and return a properly configured boto3 ``Session`` object.

        Raises:
            AWSSessionBuilder.NoSuchAWSProfile: the requested profile is not in
                ``~/.aws/config``
            AWSSessionBuilder.ForbiddenAWSAccountId: the account id used by our
                credentials is not allowed by our ``aws:`` section
        """
        aws_config = self.load_aws_section(filename or 'shipfish.yml') if use_aws_section else {}
        session = self.build_session(aws_config)
        if 'allowed_account_ids' in aws_config or 'forbidden_account_ids' in aws_config:
            account_id = session.client('sts').get_caller_identity().get('Account')
            if 'allowed_account_ids' in aws_config and account_id not in aws_config['allowed_account_ids']:
                raise self.ForbiddenAWSAccountId(
                    f"Account ID {account_id} is not in the list of allowed_account_ids"
                )
            if account_id in aws_config.get('forbidden_account_ids', []):
                raise self.ForbiddenAWSAccountId(
                    f"Account ID {account_id} is in the list of forbidden_account_ids"
                )
        return session

    def build_session(self, config: Dict[str, Any]) -> boto3.session.Session:
        region = config.get('region', None)
        # An API access key pair has priority over a profile
        if 'access_key' in config:
            return boto3.session.Session(
                aws_access_key_id=config.get('access_key'),
                aws_secret_access_key=config.get('secret_key'),
                region_name=region
            )
        if 'profile' in config:
            profile = config['profile']
            if profile not in boto3.session.Session().available_profiles:
                raise self.NoSuchAWSProfile(f"AWS profile '{profile}' does not exist in your ~/.aws/config")
            return boto3.session.Session(profile_name=profile, region_name=region)
        return boto3.session.Session(region_name=region)


def build_boto3_session(
    filename: str,
    boto3_session_override: boto3.session.Session = None,
    use_aws_section: bool = True
) -> None:
    """
    Build a boto3 session object from the shipfish.yml file and our environment,
    and save it in the global variable :py:data:`boto3_session`.

    Args:
        filename: the path to our shipfish.yml file
        boto3_session_override: if not None, use this boto3 session object instead of
            building a new one
        use_aws_section: if ``False``, ignore any ``aws:`` section in shipfish.yml
    """
    global boto3_session  # pylint: disable=global-statement
    if boto3_session_override:
        boto3_session = boto3_session_override
    else:
        boto3_session = AWSSessionBuilder().new(filename, use_aws_section=use_aws_section)


def get_boto3_session(
    boto3_session_override: boto3.session.Session = None
) -> boto3.session.Session:
    """
    Get the boto3 session object that we've built, or the one that was passed in
    by ``boto3_session_override``.  Without either, fall back to the ``boto3``
    module itself, which has the same ``client()`` interface.
    """
    if boto3_session_override:
        return boto3_session_override
    if boto3_session:
        return boto3_session
    return cast(boto3.session.Session, boto3)
