import io
import os
import ZConfig


_schema = None


def _get_schema():
    global _schema
    if _schema is None:
        path = os.path.join(os.path.dirname(__file__), "schema.xml")
        with open(path) as f:
            _schema = ZConfig.loadSchemaFile(f)
    return _schema


def config_from_file(path):
    """Load resume settings from a ZConfig file."""
    with open(path) as f:
        config, _handler = ZConfig.loadConfigFile(_get_schema(), f)
    return config


def config_from_string(text):
    """Load resume settings from ZConfig text."""
    config, _handler = ZConfig.loadConfigFile(_get_schema(), io.StringIO(text))
    return config


def open_cache(config):
    from s3resume.cache import ResumeCache

    return ResumeCache(
        cache_dir=config.cache_dir,
        max_size=config.max_resume_cache_size,
        max_record_size=config.max_resume_record_size,
    )


def open_s3_client(config):
    """Create the S3Client for the <s3> section, or None without one."""
    from s3resume.s3client import S3Client

    s3 = config.s3
    if s3 is None:
        return None
    return S3Client(
        bucket_name=s3.bucket_name,
        prefix=s3.s3_prefix,
        endpoint_url=s3.s3_endpoint_url,
        region_name=s3.s3_region,
        aws_access_key_id=s3.s3_access_key,
        aws_secret_access_key=s3.s3_secret_key,
        use_ssl=s3.s3_use_ssl,
        addressing_style=s3.s3_addressing_style,
        sse_customer_key=s3.s3_sse_customer_key,
        part_size=s3.part_size,
    )
