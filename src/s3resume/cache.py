from s3resume.interfaces import IResumeCache
from s3resume.record import decode
from s3resume.record import encode
from s3resume.record import MalformedRecord
from zope.interface import implementer

import collections
import contextlib
import logging
import os
import tempfile
import urllib.parse


logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".resume"

# Suffix of the temporary files put() renames into place
TEMP_SUFFIX = RECORD_SUFFIX + ".tmp"

CacheKey = collections.namedtuple("CacheKey", ["name", "root", "remote"])


class ResumeCacheError(Exception):
    """Base class for resume cache failures."""


class CacheWriteError(ResumeCacheError):
    """A resume record could not be written."""


class EvictionError(ResumeCacheError):
    """An eviction pass could not complete."""


def _escape(segment):
    """Make one path segment safe to use as a single directory entry.

    Dots are escaped too, so "." and ".." cannot traverse and no escaped
    segment can end in RECORD_SUFFIX.
    """
    if not segment:
        return "%"
    # surrogatepass keeps undecodable file names distinct instead of failing
    quoted = urllib.parse.quote(segment, safe="", errors="surrogatepass")
    return quoted.replace(".", "%2E")


def key_path(root, name, fs_root, remote):
    """Map (destination name, destination root, remote path) to a file path."""
    parts = [_escape(name), _escape(fs_root)]
    remote_parts = [_escape(s) for s in remote.split("/")]
    remote_parts[-1] += RECORD_SUFFIX
    return os.path.join(root, *parts, *remote_parts)


def enforce_budget(root, max_size):
    """Delete oldest records under root until their total is below max_size.

    Only resume records and leftover temporary record files are counted
    or deleted. Nothing is deleted when the total is already within
    max_size. Empty directories below root are pruned either way. Returns
    deleted paths.
    """
    files = []
    dirs = []

    def _onerror(e):
        raise EvictionError(f"error walking resume cache {root}: {e}") from e

    for dirpath, _dirnames, filenames in os.walk(root, onerror=_onerror):
        if dirpath != root:
            dirs.append(dirpath)
        for fn in filenames:
            if not fn.endswith((RECORD_SUFFIX, TEMP_SUFFIX)):
                continue
            fp = os.path.join(dirpath, fn)
            try:
                st = os.stat(fp)
            except FileNotFoundError:
                continue
            except OSError as e:
                raise EvictionError(f"error reading cache file {fp}: {e}") from e
            files.append((st.st_mtime_ns, fp, st.st_size))

    total_size = sum(size for _, _, size in files)
    removed = []
    if total_size > max_size:
        # Oldest first, path breaks ties
        files.sort(key=lambda x: (x[0], x[1]))
        for _mtime, fp, size in files:
            if total_size < max_size:
                break
            try:
                os.remove(fp)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise EvictionError(
                    f"error removing oldest cache file {fp}: {e}"
                ) from e
            total_size -= size
            removed.append(fp)
            logger.debug("Removed oldest resume cache file %s", fp)

    # Deepest first so parents emptied by their children go too
    for dirpath in sorted(dirs, key=len, reverse=True):
        with contextlib.suppress(OSError):
            os.rmdir(dirpath)
    return removed


@implementer(IResumeCache)
class ResumeCache:
    """Local filesystem cache of upload resume records.

    Records are stored as {cache_dir}/resume/{name}/{root}/{remote...}.resume
    so other files sharing cache_dir are never touched.
    cleanup() removes the oldest files (by mtime) when the total size
    exceeds max_size.
    """

    def __init__(self, cache_dir, max_size=1024 * 1024, max_record_size=64 * 1024):
        self.cache_dir = cache_dir
        self.max_size = max_size
        self.max_record_size = max_record_size
        self.root = os.path.join(cache_dir, "resume")
        os.makedirs(self.root, exist_ok=True, mode=0o700)

    def path(self, key):
        return key_path(self.root, key.name, key.root, key.remote)

    def get(self, key, fingerprint):
        path = self.path(key)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError:
            logger.debug("Could not read resume cache file %s", path, exc_info=True)
            return None
        try:
            record = decode(data)
        except MalformedRecord as e:
            logger.debug("Ignoring resume cache file %s: %s", path, e)
            return None
        if not record.fingerprint or record.fingerprint != fingerprint:
            logger.debug("Source changed since %s was written", path)
            return None
        return record

    def put(self, key, record, max_record_size=None):
        if max_record_size is None:
            max_record_size = self.max_record_size
        path = self.path(key)
        dir_path = os.path.dirname(path)
        try:
            os.makedirs(dir_path, exist_ok=True, mode=0o700)
        except OSError as e:
            raise CacheWriteError(
                f"failed to create cache directory {dir_path}: {e}"
            ) from e

        data = encode(record)
        if len(data) > max_record_size:
            logger.debug(
                "Not caching resume record for %s: %d bytes exceeds %d",
                path,
                len(data),
                max_record_size,
            )
            return None

        try:
            fd, tmp_path = tempfile.mkstemp(dir=dir_path, suffix=TEMP_SUFFIX)
        except OSError as e:
            raise CacheWriteError(f"failed to create cache file {path}: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise CacheWriteError(f"failed to write cache file {path}: {e}") from e
        return path

    def cleanup(self):
        return enforce_budget(self.root, self.max_size)

    def current_size(self):
        """Return total size of records in the cache."""
        total = 0
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for fn in filenames:
                if not fn.endswith((RECORD_SUFFIX, TEMP_SUFFIX)):
                    continue
                with contextlib.suppress(OSError):
                    total += os.path.getsize(os.path.join(dirpath, fn))
        return total
