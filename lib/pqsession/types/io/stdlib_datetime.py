##
# stdlib_datetime - support for the stdlib's datetime.
#
# I/O routines for date, timestamp, and timestamptz using the 64-bit integer
# representation of the server.
##
import datetime

from .. import DATEOID, TIMESTAMPOID, TIMESTAMPTZOID
from . import lib

UTC = datetime.timezone.utc

seconds_in_day = 24 * 60 * 60

pg_epoch_datetime = datetime.datetime(2000, 1, 1)
pg_epoch_datetime_utc = pg_epoch_datetime.replace(tzinfo = UTC)
pg_epoch_date = pg_epoch_datetime.date()
pg_date_offset = pg_epoch_date.toordinal()

infinity_date = datetime.date.max
negative_infinity_date = datetime.date.min
infinity_datetime = datetime.datetime.max
negative_infinity_datetime = datetime.datetime.min
infinity_datetime_utc = infinity_datetime.replace(tzinfo = UTC)
negative_infinity_datetime_utc = negative_infinity_datetime.replace(tzinfo = UTC)

##
# Constants used to special case infinity and -infinity.
date_pack_constants = {
	'infinity': lib.date_infinity,
	'-infinity': lib.date_negative_infinity,
}
time64_pack_constants = {
	'infinity': lib.time64_infinity,
	'-infinity': lib.time64_negative_infinity,
}
date_unpack_constants = {
	lib.date_infinity: infinity_date,
	lib.date_negative_infinity: negative_infinity_date,
}
time64_unpack_constants = {
	lib.time64_infinity: infinity_datetime,
	lib.time64_negative_infinity: negative_infinity_datetime,
}
time64tz_unpack_constants = {
	lib.time64_infinity: infinity_datetime_utc,
	lib.time64_negative_infinity: negative_infinity_datetime_utc,
}

def date_pack(x,
	pack = lib.date_pack,
	offset = pg_date_offset,
):
	if x.__class__ is str:
		return date_pack_constants[x]
	return pack(x.toordinal() - offset)

def date_unpack(x,
	unpack = lib.date_unpack,
	offset = pg_date_offset,
	from_ord = datetime.date.fromordinal,
	get = date_unpack_constants.get,
):
	return get(x) or from_ord(unpack(x) + offset)

def timestamp_pack(x,
	seconds_in_day = seconds_in_day,
	pg_epoch_datetime = pg_epoch_datetime,
):
	"""
	Create a (seconds, microseconds) pair from a `datetime.datetime` instance.
	"""
	x = (x - pg_epoch_datetime)
	return ((x.days * seconds_in_day) + x.seconds, x.microseconds)

def timestamp_unpack(seconds,
	timedelta = datetime.timedelta,
	relative_to = pg_epoch_datetime.__add__,
):
	"""
	Create a `datetime.datetime` instance from a (seconds, microseconds) pair.
	"""
	return relative_to(timedelta(0, *seconds))

def timestamptz_pack(x,
	seconds_in_day = seconds_in_day,
	pg_epoch_datetime_utc = pg_epoch_datetime_utc,
	UTC = UTC,
):
	"""
	Create a (seconds, microseconds) pair from a `datetime.datetime` instance.
	Naive instances are taken to be UTC.
	"""
	if x.tzinfo is None:
		x = x.replace(tzinfo = UTC)
	x = (x.astimezone(UTC) - pg_epoch_datetime_utc)
	return ((x.days * seconds_in_day) + x.seconds, x.microseconds)

def timestamptz_unpack(seconds,
	timedelta = datetime.timedelta,
	relative_to = pg_epoch_datetime_utc.__add__,
):
	return relative_to(timedelta(0, *seconds))

def proc_when_not_in(proc, dict):
	def _proc(x, get=dict.get):
		r = get(x) if x.__class__ in (str, bytes) else None
		if r is None:
			r = proc(x)
		return r
	return _proc

oid_to_io = {
	DATEOID : (date_pack, date_unpack),
	TIMESTAMPOID : (
		proc_when_not_in(
			lambda x: lib.time64_pack(timestamp_pack(x)), time64_pack_constants
		),
		proc_when_not_in(
			lambda x: timestamp_unpack(lib.time64_unpack(x)), time64_unpack_constants
		),
	),
	TIMESTAMPTZOID : (
		proc_when_not_in(
			lambda x: lib.time64_pack(timestamptz_pack(x)), time64_pack_constants
		),
		proc_when_not_in(
			lambda x: timestamptz_unpack(lib.time64_unpack(x)), time64tz_unpack_constants
		),
	),
}
