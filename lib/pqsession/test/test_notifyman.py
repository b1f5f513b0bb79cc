##
# .test.test_notifyman
##
import unittest
from time import monotonic
from .. import api as pg_api
from .. import exceptions as pg_exc
from .. import message as pg_msg
from .. import sys as pq_sys
from ..notifyman import NotificationManager

def notify(db, channel, payload = '', pid = 1):
	return pg_api.Notification(db, pid, channel, payload)

class test_notifyman(unittest.TestCase):
	def test_timeout(self):
		nm = NotificationManager()
		self.assertEqual(nm.gettimeout(), None)
		nm.settimeout(5)
		self.assertEqual(nm.gettimeout(), 5)
		self.assertRaises(ValueError, nm.settimeout, -1)

	def test_grouping(self):
		nm = NotificationManager(timeout = 0)
		nm.put(notify('a', 'jobs', '1'))
		nm.put(notify('b', 'jobs', '2', pid = 2))
		nm.put(notify('a', 'other', '3'))
		self.assertEqual(next(nm), ('a', [('jobs', '1', 1), ('other', '3', 1)]))
		self.assertEqual(next(nm), ('b', [('jobs', '2', 2)]))
		# idle
		self.assertEqual(next(nm), None)

	def test_idle(self):
		nm = NotificationManager(timeout = 0.05)
		start = monotonic()
		self.assertEqual(next(nm), None)
		self.assertTrue(monotonic() - start >= 0.04)
		nm.put(notify('a', 'jobs'))
		self.assertEqual(next(nm), ('a', [('jobs', '', 1)]))

	def test_iter(self):
		nm = NotificationManager(timeout = 0)
		self.assertTrue(iter(nm) is nm)
		nm.put(notify('a', 'jobs'))
		for x in nm:
			self.assertEqual(x, ('a', [('jobs', '', 1)]))
			break

	def test_notice_emitted(self):
		nm = NotificationManager(timeout = 0)
		messages = []
		pq_sys.reset_msghook(messages.append)
		try:
			m = pg_msg.Message('note', details = {'severity' : 'NOTICE'})
			nm.put(pg_api.Notice('a', m))
		finally:
			pq_sys.reset_msghook()
		self.assertEqual(messages, [m])
		self.assertTrue(nm.messages.empty())

	def test_keep_messages(self):
		nm = NotificationManager(timeout = 0, keep_messages = True)
		m = pg_msg.Message('note')
		nm.put(pg_api.Notice('a', m))
		err = pg_api.CopyError('a', pg_exc.BadCopyError('bad'))
		nm.put(err)
		self.assertEqual(nm.messages.get_nowait(), pg_api.Notice('a', m))
		self.assertEqual(nm.messages.get_nowait(), err)
		self.assertEqual(next(nm), None)

	def test_copy_error(self):
		nm = NotificationManager()
		err = pg_api.CopyError('a', pg_exc.BadCopyError('bad'))
		nm.put(err)
		self.assertEqual(nm.messages.get_nowait(), err)

if __name__ == '__main__':
	unittest.main()
