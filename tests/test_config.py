from moto import mock_aws
from s3resume.cache import ResumeCache
from s3resume.config import config_from_file
from s3resume.config import config_from_string
from s3resume.config import open_cache
from s3resume.config import open_s3_client
from s3resume.s3client import S3Client

import boto3
import pytest
import ZConfig


@pytest.fixture
def s3_env():
    with mock_aws():
        boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="test-bucket")
        yield


class TestZConfig:
    def test_default_values(self, tmp_path):
        config = config_from_string(f"cache-dir {tmp_path / 'cache'}\n")
        assert config.cache_dir == str(tmp_path / "cache")
        # Resuming is off unless enabled
        assert config.resume_larger == -1
        assert config.max_resume_cache_size == 1024 * 1024
        assert config.max_resume_record_size == 64 * 1024
        assert config.s3 is None

    def test_all_options(self, tmp_path):
        config = config_from_string(
            f"""\
            cache-dir {tmp_path / 'cache'}
            resume-larger 0
            max-resume-cache-size 10MB
            max-resume-record-size 1KB
            <s3>
                bucket-name test-bucket
                s3-prefix myprefix
                s3-endpoint-url http://localhost:9000
                s3-region us-east-1
                s3-access-key minioadmin
                s3-secret-key minioadmin
                s3-use-ssl false
                s3-addressing-style path
                part-size 16MB
            </s3>
            """
        )
        assert config.resume_larger == 0
        assert config.max_resume_cache_size == 10 * 1024 * 1024
        assert config.max_resume_record_size == 1024
        assert config.s3.bucket_name == "test-bucket"
        assert config.s3.s3_use_ssl is False
        assert config.s3.part_size == 16 * 1024 * 1024

    def test_cache_dir_required(self):
        with pytest.raises(ZConfig.ConfigurationError):
            config_from_string("resume-larger 0\n")

    def test_config_from_file(self, tmp_path):
        path = tmp_path / "resume.conf"
        path.write_text(f"cache-dir {tmp_path / 'cache'}\nresume-larger 1KB\n")
        config = config_from_file(str(path))
        assert config.resume_larger == 1024


class TestOpen:
    def test_open_cache(self, tmp_path):
        config = config_from_string(
            f"cache-dir {tmp_path / 'cache'}\nmax-resume-cache-size 2MB\n"
        )
        cache = open_cache(config)
        assert isinstance(cache, ResumeCache)
        assert cache.max_size == 2 * 1024 * 1024
        assert cache.max_record_size == 64 * 1024

    def test_open_s3_client(self, s3_env, tmp_path):
        config = config_from_string(
            f"""\
            cache-dir {tmp_path / 'cache'}
            <s3>
                bucket-name test-bucket
                s3-prefix myprefix
                s3-region us-east-1
            </s3>
            """
        )
        client = open_s3_client(config)
        assert isinstance(client, S3Client)
        assert client.root == "test-bucket/myprefix"
        assert client.part_size == 8 * 1024 * 1024

    def test_open_s3_client_without_section(self, tmp_path):
        config = config_from_string(f"cache-dir {tmp_path / 'cache'}\n")
        assert open_s3_client(config) is None
