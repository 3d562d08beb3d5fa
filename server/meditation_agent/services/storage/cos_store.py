"""腾讯云 COS 音频存储（S3 兼容接口）。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


class AudioStoreError(RuntimeError):
    """对象存储访问失败。"""


class AudioObjectStore(Protocol):
    async def exists(self, key: str) -> bool: ...

    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def public_url(self, key: str) -> str: ...


def is_not_found_error(exc: BaseException) -> bool:
    """识别 head_object 的各种"不存在"返回。"""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) if isinstance(exc.response, dict) else {}
        code = str(error.get("Code", "")).strip()
        if code in NOT_FOUND_CODES:
            return True
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return status == 404
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    return str(code) in NOT_FOUND_CODES


class CosAudioStore:
    def __init__(
        self,
        *,
        secret_id: str,
        secret_key: str,
        bucket: str,
        region: str,
        cdn_base_url: str = "",
        client: Any | None = None,
    ) -> None:
        self._bucket = bucket.strip()
        self._region = region.strip()
        self._cdn_base_url = cdn_base_url.strip().rstrip("/")
        self._client = client or boto3.client(
            "s3",
            endpoint_url=f"https://cos.{self._region}.myqcloud.com",
            aws_access_key_id=secret_id.strip() or None,
            aws_secret_access_key=secret_key.strip() or None,
            config=BotoConfig(
                signature_version="s3v4",
                region_name=self._region,
                s3={"addressing_style": "virtual"},
                retries={"max_attempts": 1},
            ),
        )
        logger.info("COS 音频存储已初始化: bucket=%s region=%s", self._bucket, self._region)

    @property
    def bucket(self) -> str:
        return self._bucket

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            if is_not_found_error(exc):
                return False
            raise AudioStoreError(f"COS headObject 失败({key}): {exc}") from exc
        return True

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
                CacheControl="public, max-age=31536000",
            )
        except (ClientError, BotoCoreError) as exc:
            raise AudioStoreError(f"COS putObject 失败({key}): {exc}") from exc

    def public_url(self, key: str) -> str:
        if self._cdn_base_url:
            return f"{self._cdn_base_url}/{key}"
        return f"https://{self._bucket}.cos.{self._region}.myqcloud.com/{key}"
