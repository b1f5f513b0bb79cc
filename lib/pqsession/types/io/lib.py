##
# .types.io.lib - binary wire forms shared by the codecs
##
from itertools import cycle
from ...python.structlib import \
	short_pack, short_unpack, \
	ulong_pack, ulong_unpack, \
	long_pack, long_unpack, \
	double_pack, double_unpack, \
	longlong_pack, longlong_unpack, \
	float_pack, float_unpack, \
	llL_pack, llL_unpack

oid_pack = ulong_pack
oid_unpack = ulong_unpack

null_sequence = b'\xff\xff\xff\xff'
string_format = b'\x00\x00'
binary_format = b'\x00\x01'

##
# Binary representations of infinity for datetimes.
time64_infinity = b'\x7f\xff\xff\xff\xff\xff\xff\xff'
time64_negative_infinity = b'\x80\x00\x00\x00\x00\x00\x00\x00'
date_infinity = b'\x7f\xff\xff\xff'
date_negative_infinity = b'\x80\x00\x00\x00'

# time types
date_pack, date_unpack = long_pack, long_unpack

def mktimetuple64(ts, divmod = divmod):
	'make a pair of (seconds, microseconds) out of the given long'
	return divmod(ts, 1000000)

def mktime64(seconds_ms):
	'make an integer out of the pair of (seconds, microseconds)'
	return seconds_ms[0] * 1000000 + seconds_ms[1]

def time64_pack(data, mktime64 = mktime64, longlong_pack = longlong_pack):
	return longlong_pack(mktime64(data))
def time64_unpack(data, longlong_unpack = longlong_unpack, mktimetuple64 = mktimetuple64):
	return mktimetuple64(longlong_unpack(data))

def interlace(*iters, next = next):
	"""
	interlace(i1, i2, ..., in) -> (
		i1-0, i2-0, ..., in-0,
		i1-1, i2-1, ..., in-1,
		...
	)
	"""
	return map(next, cycle([iter(x) for x in iters]))

def elements_pack(elements,
	null_sequence = null_sequence,
	long_pack = long_pack, len = len
):
	"""
	Pack the elements for containment within a serialized array.

	This is used by array_pack.
	"""
	for x in elements:
		if x is None:
			yield null_sequence
		else:
			yield long_pack(len(x))
			yield x

def array_pack(array_data,
	llL_pack = llL_pack,
	len = len,
	long_pack = long_pack,
	interlace = interlace
):
	"""
	Pack a raw array. A raw array consists of flags, type oid, sequence of
	dimensions, sequence of lower bounds, and an iterable of already serialized
	element data:

		array_pack((flags, type_id, dims, lowers, element_data))

	The flags are recomputed by the server, so zero is normally given.
	"""
	(flags, typid, dims, lbs, elements) = array_data
	return llL_pack((len(dims), flags, typid)) + \
		b''.join(map(long_pack, interlace(dims, lbs))) + \
		b''.join(elements_pack(elements))

def elements_unpack(data, offset,
	long_unpack = long_unpack,
	null_sequence = null_sequence):
	"""
	Unpack the serialized elements of an array into a list.

	This is used by array_unpack.
	"""
	data_len = len(data)
	while offset < data_len:
		lend = data[offset:offset+4]
		offset += 4
		if lend == null_sequence:
			yield None
		else:
			sizeof_el = long_unpack(lend)
			yield data[offset:offset+sizeof_el]
			offset += sizeof_el

def array_unpack(data,
	llL_unpack = llL_unpack,
	long_unpack = long_unpack
):
	"""
	Given a serialized array, unpack it into a tuple:

		(flags, typid, dims, lower bounds, [elements])
	"""
	ndim, flags, typid = llL_unpack(data)
	if ndim < 0:
		raise ValueError("invalid number of dimensions: %d" %(ndim,))
	# "ndim" number of pairs of longs
	end = (4 * 2 * ndim) + 12
	dims = [long_unpack(data[x:x+4]) for x in range(12, end, 8)]
	lbs = [long_unpack(data[x:x+4]) for x in range(16, end, 8)]
	return (flags, typid, dims, lbs, elements_unpack(data, end))

def array_dimensions(nested):
	"""
	Identify the dimensions of a nested list and flatten its elements.
	Raises `ValueError` when the sub-lists are not of equal length.
	"""
	dims = []
	level = nested
	while isinstance(level, (list, tuple)):
		dims.append(len(level))
		if not level:
			break
		level = level[0]

	elements = []
	def walk(seq, depth):
		if len(seq) != dims[depth]:
			raise ValueError("array sub-lists must be of matching length")
		if depth + 1 == len(dims):
			for x in seq:
				if isinstance(x, (list, tuple)):
					raise ValueError("array nesting is not uniform")
				elements.append(x)
		else:
			for x in seq:
				if not isinstance(x, (list, tuple)):
					raise ValueError("array nesting is not uniform")
				walk(x, depth + 1)
	if dims and dims[0]:
		walk(nested, 0)
	else:
		dims = []
	return dims, elements

def array_nest(elements, dims):
	"""
	Build the nested list of the given dimensions from the flat elements.
	"""
	if not dims:
		return []
	elements = list(elements)
	for size in reversed(dims[1:]):
		elements = [
			elements[x:x+size] for x in range(0, len(elements), size)
		]
	return elements
