"""AWS session bootstrap."""

from typing import Any, Optional

import boto3
import structlog

from .control_plane import translate_errors

logger = structlog.get_logger()


def create_session(
    region: str,
    role_arn: Optional[str] = None,
    external_id: Optional[str] = None,
    session_name: str = "aurora-promoter",
) -> boto3.Session:
    """
    Build a boto3 session for the region.

    When a role ARN is given the role is assumed through STS first.

    Args:
        region: AWS region
        role_arn: Optional IAM role ARN to assume
        external_id: Optional STS external ID
        session_name: Role session name

    Returns:
        boto3 Session

    Raises:
        UnclassifiedProviderError: If the role cannot be assumed
    """
    if not role_arn:
        return boto3.Session(region_name=region)

    params = {"RoleArn": role_arn, "RoleSessionName": session_name}
    if external_id:
        params["ExternalId"] = external_id

    with translate_errors("AssumeRole", role_arn):
        sts = boto3.client("sts", region_name=region)
        assumed_role = sts.assume_role(**params)

    logger.info("Assumed role", role_arn=role_arn)

    credentials = assumed_role["Credentials"]
    return boto3.Session(
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials["SessionToken"],
        region_name=region,
    )


def create_rds_client(
    region: str, role_arn: Optional[str] = None, external_id: Optional[str] = None
) -> Any:
    session = create_session(region, role_arn=role_arn, external_id=external_id)
    return session.client("rds")
