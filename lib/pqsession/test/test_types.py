##
# .test.test_types - test type representations and I/O
##
import unittest
import datetime
import uuid
import json
from .. import types as pg_types
from .. import exceptions as pg_exc
from .. import message as pg_msg
from .. import api as pg_api
from ..protocol import element3 as e3
from ..types.io import TypeIO
from ..types.io import lib as typlib
from ..types.io import builtins
from ..types.io import stdlib_datetime
from ..types.io.contrib_hstore import hstore_factory

class fake_typio(object):
	@staticmethod
	def encode(x):
		return x.encode('utf-8')
	@staticmethod
	def decode(x):
		return x.decode('utf-8')
hstore_pack, hstore_unpack = hstore_factory(0, fake_typio)

# this must pack to that, and
# that must unpack to this
expectation_samples = {
	('bool', builtins.bool_pack, builtins.bool_unpack) : [
		(True, b'\x01'),
		(False, b'\x00'),
	],

	('int2', builtins.int2_pack, builtins.int2_unpack) : [
		(0, b'\x00\x00'),
		(1, b'\x00\x01'),
		(0x7fff, b'\x7f\xff'),
		(-0x8000, b'\x80\x00'),
		(-1, b'\xff\xff'),
	],

	('int4', builtins.int4_pack, builtins.int4_unpack) : [
		(0, b'\x00\x00\x00\x00'),
		(1, b'\x00\x00\x00\x01'),
		(0x7fffffff, b'\x7f\xff\xff\xff'),
		(-0x80000000, b'\x80\x00\x00\x00'),
		(-2, b'\xff\xff\xff\xfe'),
	],

	('int8', builtins.int8_pack, builtins.int8_unpack) : [
		(0, b'\x00\x00\x00\x00\x00\x00\x00\x00'),
		(0x80000000, b'\x00\x00\x00\x00\x80\x00\x00\x00'),
		(-1, b'\xff\xff\xff\xff\xff\xff\xff\xff'),
	],

	('date', stdlib_datetime.date_pack, stdlib_datetime.date_unpack) : [
		(datetime.date(2000, 1, 1), b'\x00\x00\x00\x00'),
		(datetime.date(2000, 1, 2), b'\x00\x00\x00\x01'),
		(datetime.date(1999, 12, 31), b'\xff\xff\xff\xff'),
	],
}

class test_io(unittest.TestCase):
	def test_expectations(self):
		'IO tests where the pre-made expected serialized form is compared'
		for (typname, pack, unpack), sample in expectation_samples.items():
			for (sample_unpacked, sample_packed) in sample:
				pack_trial = pack(sample_unpacked)
				self.assertTrue(
					pack_trial == sample_packed,
					"%s sample: unpacked sample, %r, did not match " \
					"%r when packed, rather, %r" %(
						typname, sample_unpacked,
						sample_packed, pack_trial
					)
				)
				unpack_trial = unpack(sample_packed)
				self.assertTrue(
					unpack_trial == sample_unpacked,
					"%s sample: packed sample, %r, did not match " \
					"%r when unpacked, rather, %r" %(
						typname, sample_packed,
						sample_unpacked, unpack_trial
					)
				)

	def test_hstore(self):
		self.assertEqual(hstore_unpack(hstore_pack({})), {})
		d = {'key' : 'value', 'null' : None}
		self.assertEqual(hstore_unpack(hstore_pack(d)), d)
		# Sequences of pairs pack the same as mappings.
		self.assertEqual(hstore_pack([('key', 'value')]), hstore_pack({'key' : 'value'}))
		packed = hstore_pack({'k' : None})
		self.assertEqual(packed, b'\x00\x00\x00\x01' + b'\x00\x00\x00\x01k' + b'\xff\xff\xff\xff')
		self.assertRaises(ValueError, hstore_unpack, b'\x00\x00\x00\x02' + packed[4:])

	def test_datetime_infinity(self):
		self.assertEqual(stdlib_datetime.date_pack('infinity'), typlib.date_infinity)
		self.assertEqual(stdlib_datetime.date_pack('-infinity'), typlib.date_negative_infinity)
		self.assertEqual(stdlib_datetime.date_unpack(typlib.date_infinity), datetime.date.max)
		self.assertEqual(stdlib_datetime.date_unpack(typlib.date_negative_infinity), datetime.date.min)

		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.TIMESTAMPOID)
		self.assertEqual(pack('infinity'), typlib.time64_infinity)
		self.assertEqual(unpack(typlib.time64_infinity), datetime.datetime.max)
		self.assertEqual(unpack(typlib.time64_negative_infinity), datetime.datetime.min)
		pack, unpack = typio.resolve(pg_types.TIMESTAMPTZOID)
		self.assertEqual(pack('-infinity'), typlib.time64_negative_infinity)
		self.assertEqual(unpack(typlib.time64_infinity).tzinfo, datetime.timezone.utc)

	def test_timestamp(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.TIMESTAMPOID)
		ts = datetime.datetime(2000, 1, 1, 0, 0, 1)
		self.assertEqual(pack(ts), b'\x00\x00\x00\x00\x00\x0f\x42\x40')
		self.assertEqual(unpack(pack(ts)), ts)
		ts = datetime.datetime(1999, 12, 31, 23, 59, 59, 500000)
		self.assertEqual(unpack(pack(ts)), ts)

	def test_timestamptz(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.TIMESTAMPTZOID)
		cet = datetime.timezone(datetime.timedelta(hours = 1))
		self.assertEqual(pack(datetime.datetime(2000, 1, 1, 1, tzinfo = cet)), b'\x00' * 8)
		# naive is UTC
		self.assertEqual(pack(datetime.datetime(2000, 1, 1)), b'\x00' * 8)
		r = unpack(b'\x00' * 8)
		self.assertEqual(r, datetime.datetime(2000, 1, 1, tzinfo = datetime.timezone.utc))

	def test_uuid(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.UUIDOID)
		u = uuid.uuid4()
		self.assertEqual(pack(u), u.bytes)
		self.assertEqual(pack(str(u)), u.bytes)
		self.assertEqual(unpack(u.bytes), u)

	def test_json(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.JSONOID)
		self.assertEqual(unpack(pack({'a' : [1, 2]})), {'a' : [1, 2]})
		self.assertEqual(pack('x'), b'"x"')

		pack, unpack = typio.resolve(pg_types.JSONBOID)
		packed = pack({'a' : 1})
		self.assertEqual(packed[:1], b'\x01')
		self.assertEqual(json.loads(packed[1:].decode('utf-8')), {'a' : 1})
		self.assertEqual(unpack(packed), {'a' : 1})
		self.assertRaises(ValueError, unpack, b'\x02{}')

	def test_json_options(self):
		typio = TypeIO()
		loaded = []
		def loads(x):
			loaded.append(x)
			return json.loads(x)
		typio.register('jsonb', typio.codec_entries(['jsonb'])[0][1], {
			'dumps' : lambda x: json.dumps(x, sort_keys = True),
			'loads' : loads,
		})
		pack, unpack = typio.resolve(pg_types.JSONBOID)
		self.assertEqual(pack({'b' : 1, 'a' : 2}), b'\x01{"a": 2, "b": 1}')
		unpack(b'\x01{}')
		self.assertEqual(loaded, ['{}'])

	def test_text(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.TEXTOID)
		self.assertEqual(pack('ñ'), 'ñ'.encode('utf-8'))
		self.assertEqual(unpack(b'abc'), 'abc')
		typio.set_encoding('LATIN1')
		pack, unpack = typio.resolve(pg_types.VARCHAROID)
		self.assertEqual(pack('ñ'), b'\xf1')
		self.assertEqual(unpack(b'\xf1'), 'ñ')

	def test_encodings(self):
		typio = TypeIO(encoding = 'SQL_ASCII')
		self.assertEqual(typio.encode('abc'), b'abc')
		typio.set_encoding('WIN1252')
		self.assertEqual(typio.decode(b'\x80'), '€')
		self.assertRaises(LookupError, typio.set_encoding, 'no-such-encoding')

class test_arrays(unittest.TestCase):
	def test_dimensions(self):
		self.assertEqual(typlib.array_dimensions([]), ([], []))
		self.assertEqual(typlib.array_dimensions([1, 2, 3]), ([3], [1, 2, 3]))
		self.assertEqual(
			typlib.array_dimensions([[1, 2], [3, 4], [5, 6]]),
			([3, 2], [1, 2, 3, 4, 5, 6])
		)
		self.assertEqual(typlib.array_dimensions(['ab', 'cd']), ([2], ['ab', 'cd']))

	def test_uneven(self):
		self.assertRaises(ValueError, typlib.array_dimensions, [[1, 2], [3]])
		self.assertRaises(ValueError, typlib.array_dimensions, [[1, 2], 3])
		self.assertRaises(ValueError, typlib.array_dimensions, [1, [2, 3]])

	def test_nest(self):
		self.assertEqual(typlib.array_nest([], []), [])
		self.assertEqual(typlib.array_nest([1, 2, 3], [3]), [1, 2, 3])
		self.assertEqual(
			typlib.array_nest([1, 2, 3, 4, 5, 6], [2, 3]),
			[[1, 2, 3], [4, 5, 6]]
		)
		self.assertEqual(
			typlib.array_nest(range(8), [2, 2, 2]),
			[[[0, 1], [2, 3]], [[4, 5], [6, 7]]]
		)

	def test_raw(self):
		packed = typlib.array_pack((0, pg_types.INT4OID, [2], [1], [b'\x00\x00\x00\x01', None]))
		self.assertEqual(
			packed,
			b'\x00\x00\x00\x01' + b'\x00\x00\x00\x00' + b'\x00\x00\x00\x17' +
			b'\x00\x00\x00\x02' + b'\x00\x00\x00\x01' +
			b'\x00\x00\x00\x04\x00\x00\x00\x01' + b'\xff\xff\xff\xff'
		)
		flags, typid, dims, lbs, elements = typlib.array_unpack(packed)
		self.assertEqual((flags, typid, dims, lbs), (0, pg_types.INT4OID, [2], [1]))
		self.assertEqual(list(elements), [b'\x00\x00\x00\x01', None])
		self.assertRaises(ValueError, typlib.array_unpack, b'\xff\xff\xff\xff' + b'\x00' * 8)

	def test_int4_array(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(1007)
		data = [[1, 2], [3, None]]
		self.assertEqual(unpack(pack(data)), data)
		self.assertEqual(unpack(pack([])), [])
		self.assertRaises(ValueError, pack, [[1], [2, 3]])

	def test_text_array(self):
		typio = TypeIO()
		pack, unpack = typio.resolve(pg_types.element_to_array[pg_types.TEXTOID])
		self.assertEqual(unpack(pack(['a', 'ñ', None])), ['a', 'ñ', None])

	def test_nulls(self):
		typio = TypeIO(nulls = (None, ''))
		pack, unpack = typio.resolve(pg_types.element_to_array[pg_types.TEXTOID])
		self.assertEqual(unpack(pack(['a', ''])), ['a', None])

	def test_string_elements(self):
		typio = TypeIO()
		typio.identify(17000, 'citext', 17001)
		# Elements without binary I/O leave the array in the text format.
		self.assertEqual(typio.resolve(17001), typio.strio)
		self.assertFalse(typio.has_binary_io(17001))
		self.assertTrue(typio.has_binary_io(1007))

class test_typio(unittest.TestCase):
	def test_resolve_type(self):
		typio = TypeIO()
		self.assertEqual(typio.resolve_type('int4'), pg_types.INT4OID)
		self.assertEqual(typio.resolve_type('INTEGER'), pg_types.INT4OID)
		self.assertEqual(typio.resolve_type('timestamp with time zone'), pg_types.TIMESTAMPTZOID)
		self.assertEqual(typio.resolve_type(('array', 'int4')), 1007)
		self.assertEqual(typio.resolve_type(('array', pg_types.TEXTOID)), 1009)
		self.assertEqual(typio.resolve_type(('unknown_oid', '1234')), 1234)
		self.assertEqual(typio.resolve_type(25), 25)
		self.assertRaises(pg_exc.UnknownTypeError, typio.resolve_type, 'hstore')
		self.assertRaises(pg_exc.UnknownTypeError, typio.resolve_type, ('array', 'void'))
		self.assertRaises(pg_exc.UnknownTypeError, typio.resolve_type, ('range', 'int4'))

	def test_identify(self):
		typio = TypeIO()
		typio.identify(16000, 'hstore', 16005)
		self.assertEqual(typio.resolve_type('hstore'), 16000)
		self.assertEqual(typio.resolve_type(('array', 'hstore')), 16005)
		self.assertEqual(typio.type_name(16000), 'hstore')
		self.assertEqual(typio.type_name(99999), '99999')

	def test_codec_entries(self):
		typio = TypeIO()
		def codec(oid, typio, opts):
			return (None, None)
		entries = typio.codec_entries([
			'hstore',
			('jsonb', {'loads' : json.loads}),
			('thing', codec, {'x' : 1}),
		])
		self.assertEqual([x[0] for x in entries], ['hstore', 'jsonb', 'thing'])
		self.assertEqual(entries[0][1], hstore_factory)
		self.assertEqual(entries[1][2], {'loads' : json.loads})
		self.assertEqual(entries[2][1:], (codec, {'x' : 1}))
		self.assertRaises(pg_exc.UnknownTypeError, typio.codec_entries, ['nosuchtype'])

	def test_update_types(self):
		typio = TypeIO()
		entries = typio.codec_entries(['hstore'])
		# Not yet known; nothing is installed.
		self.assertEqual(typio.resolve(16000), typio.strio)
		typio.update_types([(16000, 'hstore', 16005)], entries)
		pack, unpack = typio.resolve(16000)
		d = {'a' : '1', 'b' : None}
		self.assertEqual(unpack(pack(d)), d)
		pack, unpack = typio.resolve(16005)
		self.assertEqual(unpack(pack([d, {}])), [d, {}])

	def test_register(self):
		typio = TypeIO()
		typio.register('int4', (lambda x: b'packed', lambda x: 'unpacked'))
		self.assertEqual(typio.resolve(pg_types.INT4OID)[0](1), b'packed')
		# The array type follows its new element codec.
		pack, unpack = typio.resolve(1007)
		self.assertEqual(unpack(pack([1])), ['unpacked'])

		# Registered before the type is known.
		calls = []
		def factory(oid, typio, opts):
			calls.append((oid, opts))
			return (str.encode, bytes.decode)
		typio.register('ltree', factory, 'opts')
		self.assertEqual(calls, [])
		typio.update_types([(18000, 'ltree', 0)])
		self.assertEqual(calls, [(18000, 'opts')])
		self.assertTrue(typio.has_binary_io(18000))

	def test_encode_parameters(self):
		typio = TypeIO()
		formats, args = typio.encode_parameters(
			(pg_types.INT4OID, pg_types.TEXTOID, pg_types.INT8OID, 17000),
			(1, 'text', None, 12),
		)
		self.assertEqual(formats, [
			e3.BinaryFormat, e3.BinaryFormat, e3.BinaryFormat, e3.StringFormat,
		])
		self.assertEqual(args, [b'\x00\x00\x00\x01', b'text', None, b'12'])

	def test_encode_parameters_error(self):
		typio = TypeIO()
		try:
			typio.encode_parameters((pg_types.INT4OID, pg_types.INT2OID), (1, 'not an int'))
		except pg_exc.ParameterError as err:
			self.assertEqual(err.details['position'], '2')
			self.assertTrue('int2' in err.message)
			self.assertTrue(isinstance(err.__cause__, Exception))
		else:
			self.fail("ParameterError was not raised")

	def test_decode_row(self):
		typio = TypeIO()
		columns = [
			pg_api.Column('i', 'int4', pg_types.INT4OID, 4, -1, 1, 0, 0),
			pg_api.Column('t', 'text', pg_types.TEXTOID, -1, -1, 0, 0, 0),
			pg_api.Column('n', 'int4', pg_types.INT4OID, 4, -1, 1, 0, 0),
		]
		self.assertEqual(
			typio.decode_row(columns, (b'\x00\x00\x00\x07', b'seven', None)),
			(7, 'seven', None)
		)
		try:
			typio.decode_row(columns[:1], (b'\x00',))
		except pg_exc.ColumnError as err:
			self.assertTrue("'i'" in err.message)
		else:
			self.fail("ColumnError was not raised")

	def test_result_format(self):
		typio = TypeIO()
		self.assertEqual(typio.result_format(pg_types.INT4OID), e3.BinaryFormat)
		self.assertEqual(typio.result_format(17000), e3.StringFormat)

	def test_error_from_message(self):
		typio = TypeIO()
		err = typio.error_from_message(e3.Error((
			(b'S', b'ERROR'),
			(b'C', b'42601'),
			(b'M', b'syntax error at or near "FAIL"'),
			(b'P', b'8'),
			(b'X', b'ignored'),
		)), creator = self)
		self.assertTrue(isinstance(err, pg_exc.SyntaxError))
		self.assertEqual(err.message, 'syntax error at or near "FAIL"')
		self.assertEqual(err.details, {'severity' : 'ERROR', 'position' : '8'})
		self.assertEqual(err.source, 'SERVER')
		self.assertEqual(err.creator, self)

		err = typio.error_from_message(e3.ClientError((
			(b'S', 'FATAL'), (b'C', '08006'), (b'M', 'connection lost'),
		)))
		self.assertTrue(isinstance(err, pg_exc.ConnectionFailureError))
		self.assertEqual(err.source, 'CLIENT')

		# No code is an internal error.
		err = typio.error_from_message(e3.Error(((b'M', b'?'),)))
		self.assertTrue(isinstance(err, pg_exc.InternalError))

	def test_undecodable_notice(self):
		typio = TypeIO()
		m = typio.message_from_notice(e3.Notice(((b'S', b'NOTICE'), (b'M', b'\xff'))))
		self.assertEqual(m.message, '\\xff')

	def test_message_from_notice(self):
		typio = TypeIO()
		m = typio.message_from_notice(e3.Notice((
			(b'S', b'NOTICE'), (b'C', b'00000'), (b'M', b'note'),
		)))
		self.assertEqual(type(m), pg_msg.Message)
		self.assertEqual(m.message, 'note')
		self.assertEqual(m.details, {'severity' : 'NOTICE'})

		w = typio.message_from_notice(e3.Notice((
			(b'S', b'WARNING'), (b'C', b'01P01'), (b'M', b'old'),
		)))
		self.assertTrue(isinstance(w, pg_exc.DeprecationWarning))
		w = typio.message_from_notice(e3.Notice((
			(b'S', b'WARNING'), (b'M', b'generic'),
		)))
		self.assertEqual(type(w), pg_exc.Warning)

if __name__ == '__main__':
	unittest.main()
