##
# .test.test_exceptions
##
import unittest
from .. import exceptions as pg_exc
from .. import message as pg_msg
from .. import sys as pq_sys

class test_exceptions(unittest.TestCase):
	def test_error_lookup(self):
		# An error code that doesn't exist yields the QueryError container.
		self.assertEqual(
			pg_exc.ErrorLookup('00000'), pg_exc.QueryError
		)

		self.assertEqual(
			pg_exc.ErrorLookup('XX000'), pg_exc.InternalError
		)
		# check class fallback
		self.assertEqual(
			pg_exc.ErrorLookup('XX444'), pg_exc.InternalError
		)

		# SEARV is a very large class, so there are many
		# sub-"codeclass" exceptions used to group the many
		# SEARV errors. Make sure looking up 42000 actually
		# gives the SEARVError
		self.assertEqual(
			pg_exc.ErrorLookup('42000'), pg_exc.SEARVError
		)
		self.assertEqual(
			pg_exc.ErrorLookup('08P01'), pg_exc.ProtocolError
		)
		self.assertEqual(
			pg_exc.ErrorLookup('42P05'), pg_exc.DuplicatePreparedStatementError
		)
		self.assertEqual(
			pg_exc.ErrorLookup('22P04'), pg_exc.BadCopyError
		)
		self.assertEqual(
			pg_exc.ErrorLookup('57P01'), pg_exc.AdminShutdownError
		)

	def test_warning_lookup(self):
		self.assertEqual(
			pg_exc.WarningLookup('01000'), pg_exc.Warning
		)
		self.assertEqual(
			pg_exc.WarningLookup('01P01'), pg_exc.DeprecationWarning
		)
		self.assertEqual(
			pg_exc.WarningLookup('01888'), pg_exc.Warning
		)
		self.assertEqual(
			pg_exc.WarningLookup('01-TC'), pg_exc.TypeCacheWarning
		)

	def test_families(self):
		self.assertTrue(issubclass(pg_exc.ZeroDivisionError, pg_exc.QueryError))
		self.assertTrue(issubclass(pg_exc.ConnectionFailureError, pg_exc.ConnectionError))
		self.assertTrue(issubclass(pg_exc.ConnectionError, pg_exc.Disconnection))
		self.assertFalse(issubclass(pg_exc.QueryError, pg_exc.ConnectionError))
		self.assertTrue(issubclass(pg_exc.ParameterMismatchError, pg_exc.DriverError))
		self.assertTrue(issubclass(pg_exc.NotBinaryFormatError, pg_exc.CopyModeError))
		self.assertTrue(issubclass(pg_exc.NotInCopyModeError, pg_exc.OperationError))
		self.assertTrue(issubclass(pg_exc.OperationTimeoutError, pg_exc.OperationError))
		self.assertTrue(issubclass(pg_exc.CommitVerificationError, pg_exc.DriverError))
		self.assertTrue(issubclass(pg_exc.Error, Exception))
		self.assertEqual(pg_exc.DriverError.source, 'CLIENT')
		self.assertEqual(pg_exc.QueryError.source, 'SERVER')

	def test_error_format(self):
		err = pg_exc.SyntaxError(
			'syntax error at or near "FAIL"',
			details = {'severity' : 'ERROR', 'hint' : 'check the query', 'position' : '8'},
		)
		s = str(err)
		self.assertTrue(s.startswith('syntax error at or near "FAIL"'))
		self.assertTrue('CODE: 42601' in s)
		self.assertTrue('HINT: check the query' in s)
		self.assertTrue('POSITION: 8' in s)
		self.assertEqual(err.fatal, False)
		self.assertEqual(pg_exc.AdminShutdownError('x', details = {'severity' : 'FATAL'}).fatal, True)
		self.assertEqual(pg_exc.DriverError('x').fatal, None)

	def test_errformat(self):
		pq_sys.reset_errformat(lambda x: 'formatted')
		try:
			self.assertEqual(str(pg_exc.Error('x')), 'formatted')
		finally:
			pq_sys.reset_errformat()
		self.assertTrue(str(pg_exc.Error('x')).startswith('x'))

	def test_code_override(self):
		err = pg_exc.QueryError('x', code = '99999')
		self.assertEqual(err.code, '99999')
		self.assertEqual(pg_exc.QueryError.code, None)
		self.assertTrue('code' in repr(err))

	def test_consistency(self):
		a = pg_exc.SyntaxError('x', details = {'hint' : 'y'})
		b = pg_exc.SyntaxError('x', details = {'hint' : 'y'}, creator = self)
		self.assertTrue(a.isconsistent(b))
		self.assertFalse(a.isconsistent(pg_exc.SyntaxError('z')))
		self.assertFalse(a.isconsistent(pg_exc.DataError('x', details = {'hint' : 'y'})))

class test_message(unittest.TestCase):
	def test_emit(self):
		messages = []
		pq_sys.reset_msghook(messages.append)
		try:
			m = pg_msg.Message('hello', details = {'severity' : 'NOTICE'})
			m.emit()
		finally:
			pq_sys.reset_msghook()
		self.assertEqual(messages, [m])

	def test_creator_trap(self):
		trapped = []
		class creator(object):
			def msghook(self, msg):
				trapped.append(msg)
				return True
		messages = []
		pq_sys.reset_msghook(messages.append)
		try:
			m = pg_msg.Message('hello', creator = creator())
			m.emit()
		finally:
			pq_sys.reset_msghook()
		self.assertEqual(trapped, [m])
		self.assertEqual(messages, [])

	def test_format_message(self):
		m = pg_msg.Message('hello', details = {
			'severity' : 'NOTICE', 'file' : 'x.c', 'line' : '10', 'function' : 'f',
		})
		s = pq_sys.format_message(m)
		self.assertTrue(s.startswith('NOTICE: hello'))
		self.assertTrue("LOCATION: File 'x.c', line 10, in f from SERVER" in s)
		w = pg_exc.TypeCacheWarning('no cache')
		self.assertTrue(pq_sys.format_message(w).startswith('TypeCacheWarning: no cache'))

	def test_location_string(self):
		self.assertEqual(pg_msg.Message('x').location_string, '')
		self.assertEqual(pg_msg.Message('x').severity, None)

if __name__ == '__main__':
	unittest.main()
