##
# .result - explicit success and failure values
##
"""
Every connection operation returns either an `Ok` wrapping its value or an
`Err` wrapping a `pqsession.exceptions.Error` instance::

	r = db.equery("SELECT 1")
	if r.is_ok():
		reply = r.value
	else:
		print(r.error)

`unwrap` gives the value of an `Ok` and raises the error of an `Err`, so
callers that prefer exceptions can write ``db.equery(...).unwrap()``.
"""
__all__ = ['Ok', 'Err', 'is_result']

class Ok(object):
	"""
	Successful result containing a value.
	"""
	__slots__ = ('value',)

	def __init__(self, value = None):
		object.__setattr__(self, 'value', value)

	def __setattr__(self, name, value):
		raise AttributeError("results are immutable")

	def __repr__(self):
		return 'Ok(%r)' %(self.value,)

	def __eq__(self, ob):
		return isinstance(ob, Ok) and self.value == ob.value

	def __hash__(self):
		return hash((Ok, self.value))

	def __iter__(self):
		# (value, error) unpacking
		return iter((self.value, None))

	def is_ok(self):
		return True

	def is_err(self):
		return False

	def unwrap(self):
		return self.value

	def unwrap_or(self, default):
		return self.value

	def map(self, f):
		'Apply `f` to the value, producing a new `Ok`.'
		return Ok(f(self.value))

	def flat_map(self, f):
		'Apply a result producing `f` to the value.'
		return f(self.value)

class Err(object):
	"""
	Failed result containing the error.
	"""
	__slots__ = ('error',)

	def __init__(self, error):
		object.__setattr__(self, 'error', error)

	def __setattr__(self, name, value):
		raise AttributeError("results are immutable")

	def __repr__(self):
		return 'Err(%r)' %(self.error,)

	def __eq__(self, ob):
		return isinstance(ob, Err) and self.error is ob.error

	def __hash__(self):
		return hash((Err, id(self.error)))

	def __iter__(self):
		return iter((None, self.error))

	def is_ok(self):
		return False

	def is_err(self):
		return True

	def unwrap(self):
		raise self.error

	def unwrap_or(self, default):
		return default

	def map(self, f):
		return self

	def flat_map(self, f):
		return self

def is_result(ob):
	return isinstance(ob, (Ok, Err))
