from botocore.config import Config
from botocore.exceptions import ClientError
from s3resume.interfaces import IResumableDestination
from zope.interface import implementer

import base64
import boto3
import contextlib
import hashlib
import json
import logging
import os
import re
import tempfile


logger = logging.getLogger(__name__)

# Hash state is a JSON list of the MD5 hex digests of the uploaded parts
HASH_NAME = "md5-parts"

DEFAULT_PART_SIZE = 8 * 1024 * 1024


class S3OperationError(Exception):
    """Wraps boto3 ClientError to avoid leaking AWS infrastructure details."""


@implementer(IResumableDestination)
class S3Client:
    """Thin boto3 wrapper for S3-compatible object storage.

    Uploads given a ResumeOption go through multipart uploads so an
    interrupted upload can be continued part by part.
    """

    def __init__(
        self,
        bucket_name,
        prefix="",
        endpoint_url=None,
        region_name=None,
        aws_access_key_id=None,
        aws_secret_access_key=None,
        use_ssl=True,
        addressing_style="auto",
        connect_timeout=60,
        read_timeout=60,
        sse_customer_key=None,
        part_size=DEFAULT_PART_SIZE,
        name="s3",
    ):
        self.bucket_name = bucket_name
        self.name = name
        self.part_size = part_size
        self._prefix = prefix.rstrip("/") if prefix else ""

        if self._prefix:
            if not re.fullmatch(r"[a-zA-Z0-9._/-]*", self._prefix):
                raise ValueError(
                    f"s3-prefix contains invalid characters: {self._prefix!r}. "
                    "Only alphanumeric characters, dots, hyphens, underscores, "
                    "and slashes are allowed."
                )
            if ".." in self._prefix:
                raise ValueError(f"s3-prefix must not contain '..': {self._prefix!r}")
        if part_size <= 0:
            raise ValueError(f"part-size must be positive, got {part_size}")

        # SSE-C setup
        if sse_customer_key:
            if not use_ssl:
                raise ValueError("SSE-C requires SSL, set s3-use-ssl to true")
            raw_key = base64.b64decode(sse_customer_key)
            if len(raw_key) != 32:
                raise ValueError(
                    f"SSE-C key must be 32 bytes (256-bit), got {len(raw_key)}"
                )
            self._sse_extra_args = {
                "SSECustomerAlgorithm": "AES256",
                "SSECustomerKey": raw_key,
            }
        else:
            self._sse_extra_args = {}

        config = Config(
            s3={"addressing_style": addressing_style},
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
        )

        kwargs = {"config": config}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        if region_name:
            kwargs["region_name"] = region_name
        if aws_access_key_id:
            kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        kwargs["use_ssl"] = use_ssl
        if not use_ssl:
            logger.warning(
                "S3 SSL is disabled, data and credentials are transmitted in cleartext"
            )

        self._client = boto3.client("s3", **kwargs)

    @property
    def root(self):
        if self._prefix:
            return f"{self.bucket_name}/{self._prefix}"
        return self.bucket_name

    def _full_key(self, s3_key):
        if self._prefix:
            return f"{self._prefix}/{s3_key}"
        return s3_key

    def _wrap_client_error(self, e, operation, s3_key):
        """Wrap ClientError in a generic error, logging the original at DEBUG."""
        logger.debug("S3 %s failed for key=%s: %s", operation, s3_key, e)
        raise S3OperationError(
            f"S3 {operation} failed for key={s3_key}: "
            f"{e.response['Error'].get('Code', 'Unknown')}"
        ) from e

    # -- Resume --

    def resume(self, remote, resume_id, hash_name, hash_state):
        """Validate a partial multipart upload and return its byte length.

        Parts S3 holds beyond those recorded in hash_state are ignored and
        get overwritten when the upload continues.
        """
        if hash_name != HASH_NAME:
            raise ValueError(f"unsupported resume hash {hash_name!r}")
        try:
            digests = json.loads(hash_state)
        except ValueError as e:
            raise ValueError(f"invalid resume hash state for {remote}: {e}") from e
        if not isinstance(digests, list) or not all(
            isinstance(d, str) for d in digests
        ):
            raise ValueError(f"invalid resume hash state for {remote}")

        parts = self._list_parts(remote, resume_id)[: len(digests)]
        if len(parts) < len(digests):
            raise ValueError(
                f"upload {resume_id} for {remote} has {len(parts)} parts, "
                f"expected {len(digests)}"
            )
        for number, (part, digest) in enumerate(zip(parts, digests), start=1):
            if part["PartNumber"] != number:
                raise ValueError(f"upload {resume_id} for {remote} is missing part {number}")
            if part["Size"] != self.part_size:
                raise ValueError(
                    f"part {number} of {remote} is {part['Size']} bytes, "
                    f"expected {self.part_size}"
                )
            # ETags of SSE-C parts are not MD5 digests
            if not self._sse_extra_args and part["ETag"].strip('"') != digest:
                raise ValueError(f"part {number} of {remote} does not match its hash")

        return len(parts) * self.part_size

    def _list_parts(self, s3_key, upload_id):
        full_key = self._full_key(s3_key)
        paginator = self._client.get_paginator("list_parts")
        parts = []
        try:
            for page in paginator.paginate(
                Bucket=self.bucket_name,
                Key=full_key,
                UploadId=upload_id,
            ):
                parts.extend(page.get("Parts", []))
        except ClientError as e:
            self._wrap_client_error(e, "list parts", s3_key)
        parts.sort(key=lambda p: p["PartNumber"])
        return parts

    def abort_upload(self, s3_key, upload_id):
        full_key = self._full_key(s3_key)
        try:
            self._client.abort_multipart_upload(
                Bucket=self.bucket_name, Key=full_key, UploadId=upload_id
            )
        except ClientError as e:
            self._wrap_client_error(e, "abort upload", s3_key)

    # -- Objects --

    def upload_file(self, local_path, s3_key, resume=None):
        if resume is not None:
            return self._upload_resumable(local_path, s3_key, resume)
        full_key = self._full_key(s3_key)
        try:
            self._client.upload_file(
                local_path,
                self.bucket_name,
                full_key,
                ExtraArgs=self._sse_extra_args or None,
            )
        except ClientError as e:
            self._wrap_client_error(e, "upload", s3_key)

    def _upload_resumable(self, local_path, s3_key, resume):
        full_key = self._full_key(s3_key)
        parts, digests = [], []
        upload_id = None
        if resume.id and resume.pos > 0:
            upload_id = resume.id
            # Continue after the whole parts below the resume position
            listed = self._list_parts(s3_key, upload_id)
            listed = listed[: resume.pos // self.part_size]
            for p in listed:
                parts.append({"PartNumber": p["PartNumber"], "ETag": p["ETag"]})
                digests.append(p["ETag"].strip('"'))
        else:
            try:
                response = self._client.create_multipart_upload(
                    Bucket=self.bucket_name, Key=full_key, **self._sse_extra_args
                )
            except ClientError as e:
                self._wrap_client_error(e, "create upload", s3_key)
            upload_id = response["UploadId"]

        with open(local_path, "rb") as f:
            f.seek(len(parts) * self.part_size)
            while True:
                data = f.read(self.part_size)
                if not data and parts:
                    break
                part_number = len(parts) + 1
                try:
                    response = self._client.upload_part(
                        Bucket=self.bucket_name,
                        Key=full_key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=data,
                        **self._sse_extra_args,
                    )
                except ClientError as e:
                    self._wrap_client_error(e, "upload part", s3_key)
                parts.append({"PartNumber": part_number, "ETag": response["ETag"]})
                digests.append(hashlib.md5(data).hexdigest())
                self._save_resume_state(resume, s3_key, upload_id, digests)
                if len(data) < self.part_size:
                    break

        try:
            self._client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=full_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except ClientError as e:
            self._wrap_client_error(e, "complete upload", s3_key)
        return upload_id

    def _save_resume_state(self, resume, s3_key, upload_id, digests):
        if resume.set_id is None:
            return
        try:
            resume.set_id(upload_id, HASH_NAME, json.dumps(digests))
        except Exception:
            logger.warning(
                "Failed to save resume state for %s", s3_key, exc_info=True
            )

    def download_file(self, s3_key, local_path):
        full_key = self._full_key(s3_key)
        target_dir = os.path.dirname(local_path) or "."
        os.makedirs(target_dir, exist_ok=True, mode=0o700)
        fd, tmp_path = tempfile.mkstemp(dir=target_dir, suffix=".tmp")
        try:
            os.close(fd)
            try:
                self._client.download_file(
                    self.bucket_name,
                    full_key,
                    tmp_path,
                    ExtraArgs=self._sse_extra_args or None,
                )
            except ClientError as e:
                self._wrap_client_error(e, "download", s3_key)
            os.rename(tmp_path, local_path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise

    def head_object(self, s3_key):
        full_key = self._full_key(s3_key)
        try:
            return self._client.head_object(
                Bucket=self.bucket_name, Key=full_key, **self._sse_extra_args
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "404":
                return None
            self._wrap_client_error(e, "head", s3_key)

