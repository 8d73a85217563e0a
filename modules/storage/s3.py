from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import boto3


@dataclass
class S3Config:
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    region: str | None = None
    public_endpoint: str | None = None


def client(cfg: S3Config, *, endpoint: str | None = None):
    sess = boto3.session.Session()
    return sess.client(
        "s3",
        endpoint_url=endpoint or cfg.endpoint,
        aws_access_key_id=cfg.access_key,
        aws_secret_access_key=cfg.secret_key,
        region_name=cfg.region,
    )


def upload_bytes(cfg: S3Config, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
    s3 = client(cfg)
    s3.put_object(Bucket=cfg.bucket, Key=key, Body=data, ContentType=content_type)


def get_bytes(cfg: S3Config, key: str) -> bytes:
    s3 = client(cfg)
    obj = s3.get_object(Bucket=cfg.bucket, Key=key)
    return obj["Body"].read()


def delete_object(cfg: S3Config, key: str) -> None:
    s3 = client(cfg)
    s3.delete_object(Bucket=cfg.bucket, Key=key)


def head_bucket(cfg: S3Config) -> None:
    client(cfg).head_bucket(Bucket=cfg.bucket)


def presign_get(cfg: S3Config, key: str, expires: timedelta = timedelta(hours=1)) -> str:
    """Presigned GET URL for an uploaded object.

    When ``public_endpoint`` is configured the URL is signed against it so browsers can
    reach it; SDK calls keep using the internal endpoint.
    """
    s3 = client(cfg, endpoint=cfg.public_endpoint)
    return s3.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": cfg.bucket, "Key": key},
        ExpiresIn=int(expires.total_seconds()),
    )
