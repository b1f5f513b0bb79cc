##
# .test.test_result
##
import unittest
from .. import exceptions as pg_exc
from ..result import Ok, Err, is_result

class test_result(unittest.TestCase):
	def test_ok(self):
		r = Ok(10)
		self.assertTrue(r.is_ok())
		self.assertFalse(r.is_err())
		self.assertEqual(r.unwrap(), 10)
		self.assertEqual(r.unwrap_or(0), 10)
		self.assertEqual(r.map(lambda x: x + 1), Ok(11))
		self.assertEqual(r.flat_map(lambda x: Ok(x * 2)), Ok(20))
		value, error = r
		self.assertEqual((value, error), (10, None))
		self.assertEqual(repr(Ok(None)), 'Ok(None)')
		self.assertEqual(Ok(), Ok(None))

	def test_err(self):
		e = pg_exc.DriverError("failed")
		r = Err(e)
		self.assertTrue(r.is_err())
		self.assertFalse(r.is_ok())
		self.assertEqual(r.unwrap_or(0), 0)
		self.assertTrue(r.map(lambda x: x + 1) is r)
		self.assertTrue(r.flat_map(lambda x: Ok(x)) is r)
		self.assertRaises(pg_exc.DriverError, r.unwrap)
		value, error = r
		self.assertEqual((value, error), (None, e))

	def test_equality(self):
		e = pg_exc.DriverError("failed")
		self.assertEqual(Err(e), Err(e))
		self.assertNotEqual(Err(e), Err(pg_exc.DriverError("failed")))
		self.assertNotEqual(Ok(None), Err(e))
		self.assertEqual(len(set([Ok(1), Ok(1), Err(e), Err(e)])), 2)

	def test_flat_map_err(self):
		e = pg_exc.DriverError("second")
		self.assertTrue(Ok(1).flat_map(lambda x: Err(e)).error is e)

	def test_immutable(self):
		r = Ok(1)
		self.assertRaises(AttributeError, setattr, r, 'value', 2)
		self.assertRaises(AttributeError, setattr, Err(None), 'error', 2)

	def test_is_result(self):
		self.assertTrue(is_result(Ok()))
		self.assertTrue(is_result(Err(None)))
		self.assertFalse(is_result(None))
		self.assertFalse(is_result((1, None)))

if __name__ == '__main__':
	unittest.main()
