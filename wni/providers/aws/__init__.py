"""AWS EC2 driver for wni.

Example:
    from wni.providers.aws import AWS, AWSDriver

    driver = AWSDriver.create(
        AWS(
            infrastructure_name="dev-x7k2p",
            region="us-east-2",
            credentials_file="/home/me/.aws/credentials",
        )
    )
"""

from wni.providers.aws.config import AWS
from wni.providers.aws.driver import AWSDriver

__all__ = ["AWS", "AWSDriver"]
