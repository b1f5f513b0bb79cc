##
# .message - PostgreSQL message representation
##
from operator import itemgetter
# Final msghook called exists at .sys.msghook
from . import sys as pq_sys

class Message(object):
	"""
	A message emitted by PostgreSQL or by the client. Notices delivered to an
	asynchronous receiver are instances of this class; errors are instances of
	the `pqsession.exceptions.Error` subclasses.
	"""
	_e_label = property(lambda x: x.details.get('severity', 'MESSAGE'))

	def _e_metas(self, get0 = itemgetter(0)):
		yield (None, self.message)
		if self.code and self.code != "00000":
			yield ('CODE', self.code)
		locstr = self.location_string
		if locstr:
			yield ('LOCATION', locstr + ' from ' + self.source)
		else:
			yield ('LOCATION', self.source)
		for k, v in sorted(self.details.items(), key = get0):
			if k not in self.standard_detail_coverage:
				yield (k.upper(), str(v))

	source = 'SERVER'
	code = '00000'
	message = None
	details = None

	severities = (
		'DEBUG',
		'INFO',
		'NOTICE',
		'WARNING',
		'ERROR',
		'FATAL',
		'PANIC',
	)
	sources = (
		'SERVER',
		'CLIENT',
	)

	def isconsistent(self, other):
		"""
		Return `True` if the all the fields of the message in `self` are
		equivalent to the fields in `other`.
		"""
		if not isinstance(other, self.__class__):
			return False
		# creator is contextual information
		return (
			self.code == other.code and \
			self.message == other.message and \
			self.details == other.details and \
			self.source == other.source
		)

	def __init__(self,
		message : "The primary information of the message",
		code : "Message code to attach (SQL state)" = None,
		details : "additional information associated with the message" = None,
		source : "Which side generated the message(SERVER, CLIENT)" = None,
		creator : "The object that called for instantiation" = None,
	):
		self.message = message
		self.details = details if details is not None else {}
		self.creator = creator
		if code is not None and self.code != code:
			self.code = code
		if source is not None and self.source != source:
			self.source = source

	def __repr__(self):
		return "{mod}.{typname}({message!r}{code}{details}{source})".format(
			mod = self.__module__,
			typname = self.__class__.__name__,
			message = self.message,
			code = (
				"" if self.code == type(self).code
				else ", code = " + repr(self.code)
			),
			details = (
				"" if not self.details
				else ", details = " + repr(self.details)
			),
			source = (
				"" if self.source is None
				else ", source = " + repr(self.source)
			),
		)

	@property
	def severity(self):
		return self.details.get('severity')

	@property
	def location_string(self):
		"""
		A single line representation of the 'file', 'line', and 'function' keys
		in the `details` dictionary.
		"""
		details = self.details
		loc = [
			details.get(k, '?') for k in ('file', 'line', 'function')
		]
		return (
			"" if loc == ['?', '?', '?']
			else "File {0!r}, "\
			"line {1!s}, in {2!s}".format(*loc)
		)

	# keys to filter in .details
	standard_detail_coverage = frozenset(['message', 'severity', 'file', 'function', 'line',])

	def emit(self):
		"""
		Hand the message to the creator's msghook, if any; otherwise
		to `pqsession.sys.msghook`.
		"""
		hook = getattr(self.creator, 'msghook', None)
		if hook is not None and hook(self):
			# the trap returned a nonzero value,
			# so don't continue raising. (like with's __exit__)
			return self.creator
		pq_sys.msghook(self)
