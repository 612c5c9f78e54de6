from zope.interface import Attribute
from zope.interface import Interface


class IResumableDestination(Interface):
    """Upload target able to continue a partial upload."""

    name = Attribute("Identity of the destination, e.g. 's3'.")

    root = Attribute("Root path of the destination, e.g. 'bucket/prefix'.")

    def resume(remote, resume_id, hash_name, hash_state):
        """Prepare to continue the upload identified by resume_id.

        Return the byte position to continue from. Raise on failure.
        """

    def upload_file(local_path, remote, resume=None):
        """Upload a local file, honouring an optional ResumeOption."""


class IResumeCache(Interface):
    """Disk cache of resume records bounded by total size."""

    def get(key, fingerprint):
        """Return the record for key if its fingerprint matches, else None."""

    def put(key, record, max_record_size=None):
        """Store record under key unless it is larger than the record cap."""

    def path(key):
        """Return the file path the record for key is stored at."""

    def cleanup():
        """Remove oldest records until the cache is under its size budget."""


class IFingerprinter(Interface):
    """Produces a stable identity string for a source object."""

    def __call__(src, strict=False):
        """Return the fingerprint of src."""
