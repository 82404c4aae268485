"""Object storage upload of published trees."""

import logging
import mimetypes
from pathlib import Path
from typing import Optional

import boto3

from llmscrawl.config import settings

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".md": "text/markdown; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
}


class S3Uploader:
    """Uploads a domain's current tree to S3; a no-op without a bucket."""

    def __init__(self, bucket: Optional[str] = None, prefix: Optional[str] = None, client=None):
        """Initialize the uploader from settings unless overridden."""
        self.bucket = bucket if bucket is not None else settings.S3_BUCKET
        self.prefix = (prefix if prefix is not None else settings.S3_PREFIX).strip("/")
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.bucket)

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", region_name=settings.AWS_REGION or None)
        return self._client

    def upload_tree(self, local_dir: Path, domain: str) -> int:
        """
        Upload every file under local_dir to <prefix>/<domain>/...

        Returns:
            Number of files uploaded
        """
        if not self.enabled:
            logger.debug("S3 bucket not configured, skipping upload")
            return 0

        uploaded = 0
        for path in sorted(Path(local_dir).rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(local_dir).as_posix()
            key = "/".join(part for part in (self.prefix, domain, relative) if part)
            content_type = CONTENT_TYPES.get(path.suffix) or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=path.read_bytes(),
                ContentType=content_type,
            )
            uploaded += 1

        logger.info(f"Uploaded {uploaded} files for {domain} to s3://{self.bucket}/{self.prefix}")
        return uploaded
