"""Organization-level steps that precede the unit/account chain."""

from __future__ import annotations

import json
from typing import Mapping

from orgtree.chain.builder import (
    CICD_DELEGATED_PRINCIPAL,
    ORGANIZATIONS,
    STAGE_DELEGATED_PRINCIPAL,
    DependencyChainBuilder,
    EmailTemplate,
)
from orgtree.chain.steps import (
    ActionCall,
    EntityRef,
    ParameterValue,
    ProvisioningStep,
    ResourceFamily,
    StepVerb,
)
from orgtree.core.errors import ValidationError
from orgtree.domain.entities import (
    EmailIdentity,
    Organization,
    OrganizationRoot,
    OrganizationTrail,
    TrailBucket,
)
from orgtree.domain.specs import OrganizationSpec

EMAIL_STEP_ID = "email"
ORGANIZATION_STEP_ID = "organization"
ROOT_STEP_ID = "root"
TRAIL_BUCKET_STEP_ID = "trail-bucket"
TRAIL_STEP_ID = "trail"

CLOUDTRAIL_PRINCIPAL = "cloudtrail.amazonaws.com"
TRAIL_NAME = "OrganizationTrail"
# {id} is the organization id, filled in once the organization step completes
TRAIL_BUCKET_NAME = "organization-trail-{id}"


def verification_email(root_email: str) -> str:
    """Sub-addressed form of the root email that receives the verification link."""
    prefix, sep, domain = root_email.partition("@")
    if not sep or not prefix or not domain:
        raise ValidationError(f"Invalid root email: {root_email}")
    if "+" in prefix:
        raise ValidationError("root Email should be without + in it", details={"email": root_email})
    return f"{prefix}+aws@{domain}"


def build_bootstrap(
    spec: OrganizationSpec,
    *,
    region: str,
    prior_ids: Mapping[str, str] | None = None,
    account_number: str | None = None,
) -> list[ProvisioningStep]:
    """Steps for email verification, the organization, its root lookup and its trail."""
    prior_ids = prior_ids or {}
    steps: list[ProvisioningStep] = []

    if spec.force_email_verification:
        if not spec.email:
            raise ValidationError("forceEmailVerification requires the root account email")
        address = verification_email(spec.email)
        if EMAIL_STEP_ID not in prior_ids:
            steps.append(
                ProvisioningStep(
                    step_id=EMAIL_STEP_ID,
                    verb=StepVerb.create,
                    target=EmailIdentity(address, address),
                    family=ResourceFamily.email_identity,
                    call=ActionCall("ses", "verify_email_identity", region, {"EmailAddress": address}),
                    id_path="EmailAddress",
                )
            )

    org_prior = prior_ids.get(ORGANIZATION_STEP_ID)
    if org_prior is None:
        org_call = ActionCall(ORGANIZATIONS, "create_organization", region, {"FeatureSet": "ALL"})
        follow_ups: tuple[ActionCall, ...] = tuple(
            ActionCall(
                ORGANIZATIONS, "enable_aws_service_access", region, {"ServicePrincipal": principal}
            )
            for principal in (
                STAGE_DELEGATED_PRINCIPAL,
                CICD_DELEGATED_PRINCIPAL,
                CLOUDTRAIL_PRINCIPAL,
            )
        )
    else:
        org_call = ActionCall(ORGANIZATIONS, "describe_organization", region)
        follow_ups = ()
    steps.append(
        ProvisioningStep(
            step_id=ORGANIZATION_STEP_ID,
            verb=StepVerb.create if org_prior is None else StepVerb.update,
            target=Organization("organization", ORGANIZATION_STEP_ID),
            family=ResourceFamily.organization,
            call=org_call,
            id_path="Organization.Id",
            predecessor=steps[-1].step_id if steps else None,
            prior_physical_id=org_prior,
            follow_ups=follow_ups,
        )
    )

    steps.append(
        ProvisioningStep(
            step_id=ROOT_STEP_ID,
            verb=StepVerb.create if ROOT_STEP_ID not in prior_ids else StepVerb.update,
            target=OrganizationRoot("root", ROOT_STEP_ID),
            family=ResourceFamily.organization,
            call=ActionCall(ORGANIZATIONS, "list_roots", region),
            id_path="Roots.0.Id",
            predecessor=ORGANIZATION_STEP_ID,
            prior_physical_id=prior_ids.get(ROOT_STEP_ID),
        )
    )
    steps.extend(build_trail(region=region, prior_ids=prior_ids, account_number=account_number))
    return steps


def trail_bucket_policy(account_number: str | None = None) -> str:
    """Bucket policy letting CloudTrail deliver organization logs.

    Management account logs get their own prefix when its number is known.
    The result still contains ``{id}`` placeholders for the organization id.
    """
    bucket_arn = f"arn:aws:s3:::{TRAIL_BUCKET_NAME}"
    principal = {"Service": CLOUDTRAIL_PRINCIPAL}
    statements = [
        {
            "Sid": "TrailAclCheck",
            "Effect": "Allow",
            "Principal": principal,
            "Action": "s3:GetBucketAcl",
            "Resource": bucket_arn,
        }
    ]
    log_owners = ["{id}"] + ([account_number] if account_number else [])
    for index, owner in enumerate(log_owners):
        statements.append(
            {
                "Sid": f"TrailWrite{index}",
                "Effect": "Allow",
                "Principal": principal,
                "Action": "s3:PutObject",
                "Resource": f"{bucket_arn}/AWSLogs/{owner}/*",
                "Condition": {"StringEquals": {"s3:x-amz-acl": "bucket-owner-full-control"}},
            }
        )
    return json.dumps({"Version": "2012-10-17", "Statement": statements})


def build_trail(
    *,
    region: str,
    prior_ids: Mapping[str, str],
    account_number: str | None = None,
) -> list[ProvisioningStep]:
    """Log bucket and organization trail, created between the root and the first unit."""
    bucket = EntityRef(ORGANIZATION_STEP_ID, TRAIL_BUCKET_NAME)
    bucket_follow_ups = (
        ActionCall(
            "s3",
            "put_public_access_block",
            region,
            {
                "Bucket": bucket,
                "PublicAccessBlockConfiguration": {
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            },
        ),
        ActionCall(
            "s3",
            "put_bucket_policy",
            region,
            {
                "Bucket": bucket,
                "Policy": EntityRef(ORGANIZATION_STEP_ID, trail_bucket_policy(account_number)),
            },
        ),
    )

    bucket_prior = prior_ids.get(TRAIL_BUCKET_STEP_ID)
    if bucket_prior is None:
        create_parameters: dict[str, ParameterValue] = {"Bucket": bucket}
        if region != "us-east-1":
            create_parameters["CreateBucketConfiguration"] = {"LocationConstraint": region}
        bucket_call = ActionCall("s3", "create_bucket", region, create_parameters)
    else:
        bucket_call = ActionCall("s3", "head_bucket", region, {"Bucket": bucket})

    trail_prior = prior_ids.get(TRAIL_STEP_ID)
    if trail_prior is None:
        trail_call = ActionCall(
            "cloudtrail",
            "create_trail",
            region,
            {
                "Name": TRAIL_NAME,
                "S3BucketName": bucket,
                "IsMultiRegionTrail": True,
                "IsOrganizationTrail": True,
            },
        )
    else:
        trail_call = ActionCall("cloudtrail", "get_trail", region, {"Name": TRAIL_NAME})

    return [
        ProvisioningStep(
            step_id=TRAIL_BUCKET_STEP_ID,
            verb=StepVerb.create if bucket_prior is None else StepVerb.update,
            target=TrailBucket(TRAIL_BUCKET_NAME, TRAIL_BUCKET_STEP_ID),
            family=ResourceFamily.organization,
            call=bucket_call,
            id_path="Location" if bucket_prior is None else None,
            predecessor=ROOT_STEP_ID,
            prior_physical_id=bucket_prior,
            follow_ups=bucket_follow_ups,
        ),
        ProvisioningStep(
            step_id=TRAIL_STEP_ID,
            verb=StepVerb.create if trail_prior is None else StepVerb.update,
            target=OrganizationTrail(TRAIL_NAME, TRAIL_STEP_ID),
            family=ResourceFamily.organization,
            call=trail_call,
            id_path="TrailARN" if trail_prior is None else None,
            predecessor=TRAIL_BUCKET_STEP_ID,
            prior_physical_id=trail_prior,
            follow_ups=(ActionCall("cloudtrail", "start_logging", region, {"Name": TRAIL_NAME}),),
        ),
    ]


def plan_organization(
    spec: OrganizationSpec,
    *,
    region: str,
    account_number: str | None = None,
    prior_ids: Mapping[str, str] | None = None,
) -> list[ProvisioningStep]:
    """Full ordered plan: bootstrap steps, then the unit/account chain under the root."""
    if not spec.nested_ou:
        return []

    if spec.email and "+" in spec.email.partition("@")[0]:
        raise ValidationError("root Email should be without + in it", details={"email": spec.email})

    template = None
    number = spec.management_account_id or account_number
    if spec.email and number:
        template = EmailTemplate.from_root_email(spec.email, number)

    bootstrap = build_bootstrap(
        spec, region=region, prior_ids=prior_ids, account_number=number
    )
    builder = DependencyChainBuilder(email_template=template, region=region, prior_ids=prior_ids)
    chain = builder.build(
        spec.nested_ou,
        EntityRef(ROOT_STEP_ID),
        predecessor=bootstrap[-1].step_id,
    )
    return bootstrap + chain
