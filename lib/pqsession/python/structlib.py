##
# .python.structlib - pack/unpack pairs for network order data
##
import struct

null_sequence = b'\xff\xff\xff\xff'

def mk_pack(x):
	"""
	Create a pair, (pack, unpack), for the given `struct` format.

	Multi-field formats pack a sequence and unpack to a tuple. Single field
	formats pack and unpack the bare value.
	"""
	s = struct.Struct('!' + x)
	if len(x) > 1:
		def pack(y, p = s.pack):
			return p(*y)
		return (pack, s.unpack_from)
	else:
		def unpack(y, p = s.unpack_from):
			return p(y)[0]
		return (s.pack, unpack)

byte_pack, byte_unpack = lambda x: bytes((x,)), lambda x: x[0]
double_pack, double_unpack = mk_pack("d")
float_pack, float_unpack = mk_pack("f")

short_pack, short_unpack = mk_pack("h")
ushort_pack, ushort_unpack = mk_pack("H")
long_pack, long_unpack = mk_pack("l")
ulong_pack, ulong_unpack = mk_pack("L")
longlong_pack, longlong_unpack = mk_pack("q")
ulonglong_pack, ulonglong_unpack = mk_pack("Q")

# Message heads.
lH_pack, lH_unpack = mk_pack("lH")
llL_pack, llL_unpack = mk_pack("llL")
# XLogData and keepalive heads of the replication sub-protocol.
QQq_pack, QQq_unpack = mk_pack("QQq")
QqB_pack, QqB_unpack = mk_pack("QqB")
QQQqB_pack, QQQqB_unpack = mk_pack("QQQqB")

def split_sized_data(
	data,
	ulong_unpack = ulong_unpack,
	null_field = 0xFFFFFFFF,
	len = len,
	errmsg = "insufficient data in field {0}, required {1} bytes, {2} remaining".format
):
	"""
	Given a sequence of length prefixed fields, yield the field data.
	`None` is yielded for NULL fields.
	"""
	v = memoryview(data)
	f = 1
	while v:
		l = ulong_unpack(v)
		if l == null_field:
			v = v[4:]
			f += 1
			yield None
			continue
		l += 4
		d = v[4:l].tobytes()
		if len(d) < l-4:
			raise ValueError(errmsg(f, l - 4, len(d)))
		v = v[l:]
		f += 1
		yield d
