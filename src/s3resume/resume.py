from s3resume.cache import CacheKey
from s3resume.cache import ResumeCacheError
from s3resume.fingerprint import file_fingerprint
from s3resume.record import ResumeRecord

import logging


logger = logging.getLogger(__name__)


class PersistError(ResumeCacheError):
    """Saving resume state for an upload failed."""


class ResumeOption:
    """Resume parameters handed to a destination's upload.

    id and pos seed a resume attempt; the destination calls
    set_id(resume_id, hash_name, hash_state) whenever it has new
    resumable state.
    """

    def __init__(self, id="", pos=0, set_id=None):
        self.id = id
        self.pos = pos
        self.set_id = set_id

    def __repr__(self):
        return f"<ResumeOption id={self.id!r} pos={self.pos}>"


class ResumeSession:
    """Resume bookkeeping for one upload attempt of src to remote.

    prepare() looks up cached resume state and asks the destination to
    continue from it. set_id() persists fresh state and runs a single
    eviction pass per session.
    """

    def __init__(
        self,
        cache,
        destination,
        remote,
        src,
        resume_larger=-1,
        fingerprint=file_fingerprint,
        strict=False,
    ):
        self.cache = cache
        self.destination = destination
        self.remote = remote
        self.src = src
        self.resume_larger = resume_larger
        self._fingerprint = fingerprint
        self._strict = strict
        self.key = CacheKey(destination.name, destination.root, remote)
        self.attempted = False
        self.resume_id = ""
        self.position = 0
        self._cache_cleaned = False

    def prepare(self):
        """Return the byte position to start uploading from (0 = restart)."""
        self.attempted = True
        self.resume_id = ""
        self.position = 0
        if self.resume_larger < 0:
            return 0

        try:
            fingerprint = self._fingerprint(self.src, self._strict)
            record = self.cache.get(self.key, fingerprint)
        except Exception:
            logger.warning(
                "Could not look up resume state for %s, not resuming",
                self.remote,
                exc_info=True,
            )
            return 0
        if record is None:
            return 0

        logger.debug(
            "Existing resume cache file found for %s. Attempting resume.",
            self.remote,
        )
        try:
            position = self.destination.resume(
                self.remote, record.resume_id, record.hash_name, record.hash_state
            )
        except Exception:
            logger.warning(
                "Resume of %s failed, restarting upload", self.remote, exc_info=True
            )
            return 0

        if position is None or position <= self.resume_larger:
            return 0
        self.resume_id = record.resume_id
        self.position = position
        return position

    def set_id(self, resume_id, hash_name, hash_state):
        """Persist resume state reported by the destination."""
        try:
            fingerprint = self._fingerprint(self.src, self._strict)
        except OSError as e:
            raise PersistError(f"failed to fingerprint {self.src}: {e}") from e
        record = ResumeRecord(fingerprint, resume_id, hash_name, hash_state)
        try:
            self.cache.put(self.key, record)
        except (ResumeCacheError, ValueError) as e:
            raise PersistError(
                f"failed to save resume state for {self.remote!r}: {e}"
            ) from e

        if not self._cache_cleaned:
            self._cache_cleaned = True
            try:
                self.cache.cleanup()
            except ResumeCacheError as e:
                raise PersistError(
                    f"failed to clean resume cache {self.cache.cache_dir}: {e}"
                ) from e

    def option(self):
        return ResumeOption(id=self.resume_id, pos=self.position, set_id=self.set_id)


def create_resume_option(
    cache, destination, remote, src, resume_larger=-1, **kwargs
):
    """Prepare a ResumeSession and return the option for the upload."""
    session = ResumeSession(
        cache, destination, remote, src, resume_larger=resume_larger, **kwargs
    )
    session.prepare()
    return session.option()


def upload_with_resume(
    destination, cache, src, remote, resume_larger=-1, **kwargs
):
    """Upload local file src to remote, continuing a previous attempt if possible."""
    option = create_resume_option(
        cache, destination, remote, src, resume_larger=resume_larger, **kwargs
    )
    if option.pos:
        logger.info("Resuming at byte position: %d", option.pos)
    return destination.upload_file(src, remote, resume=option)
