"""
Exception types for the merge pipeline.
"""


class MergeKitError(Exception):
	"""
	Base class for pipeline errors.
	"""


class SceneError(MergeKitError):
	"""
	Malformed design document, record data, or request payload.
	"""


class LayoutError(MergeKitError):
	"""
	Imposition request that cannot be satisfied by the sheet grid.
	"""


class BarcodeError(MergeKitError):
	"""
	Value could not be encoded in the requested symbology.
	"""


class ExternalToolError(MergeKitError):
	"""
	External program failed, timed out, or is not installed.
	"""

	def __init__(self, message: str, timed_out: bool = False):
		super().__init__(message)
		self.timed_out = timed_out


class JobCancelled(MergeKitError):
	"""
	Job was cancelled between records.
	"""
