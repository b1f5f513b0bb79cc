##
# .replication - logical replication receiver
##
"""
Logical replication support.

After `start_replication` the connection streams the WAL data produced by the
slot's output plugin. Every XLogData message is given to the handler, a
`pqsession.api.ReplicationHandler`, that returns the positions it has flushed
and applied. The positions are reported back to the server with Standby
Status Update messages, periodically and whenever the server asks for one.

LSNs are integers on the client side; `parse_lsn` and `format_lsn` convert
from and to the ``HI/LO`` text form used by the server::

	>>> parse_lsn('16/B374D848')
	97500059720
	>>> format_lsn(97500059720)
	'16/B374D848'
"""
import sys
import time
from collections import namedtuple

from . import api as pg_api
from .protocol import element3 as element

__all__ = [
	'parse_lsn',
	'format_lsn',
	'pg_clock',
	'ReplicationState',
	'ReplicationStream',
	'CallableHandler',
	'QueueHandler',
	'WALData',
]

# 2000-01-01 00:00:00 UTC
pg_epoch = 946684800

def parse_lsn(text):
	hi, lo = text.split('/', 1)
	return (int(hi, 16) << 32) | int(lo, 16)

def format_lsn(lsn):
	return '%X/%X' %(lsn >> 32, lsn & 0xFFFFFFFF)

def pg_clock(now = None):
	"""
	Microseconds since the PostgreSQL epoch, the clock of the replication
	messages.
	"""
	if now is None:
		now = time.time()
	return int((now - pg_epoch) * 1000000)

class ReplicationState(object):
	"""
	The positions known to the client.

	 received
	  End of the last XLogData received.
	 flushed
	  Reported as durably stored by the handler.
	 applied
	  Reported as applied by the handler.

	`flushed` and `applied` never decrease, and `received` is never behind
	either of them.
	"""
	__slots__ = ('received', 'flushed', 'applied', 'reported')

	def __init__(self, start = 0):
		self.received = start
		self.flushed = start
		self.applied = start
		# Positions of the last status update sent.
		self.reported = None

	def __repr__(self):
		return '{mod}.{name}({received}, {flushed}, {applied})'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			received = format_lsn(self.received),
			flushed = format_lsn(self.flushed),
			applied = format_lsn(self.applied),
		)

	def snapshot(self):
		return (self.received, self.flushed, self.applied)

	def receive(self, lsn):
		if lsn > self.received:
			self.received = lsn

	def acknowledge(self, flushed = None, applied = None):
		"""
		Advance the flushed and applied positions. Lower positions and `None`
		leave the current ones in place.
		"""
		if flushed is not None and flushed > self.flushed:
			self.flushed = flushed
		if applied is not None and applied > self.applied:
			self.applied = applied
		self.receive(max(self.flushed, self.applied))

	def align(self):
		'Consider everything received as flushed and applied.'
		self.acknowledge(self.received, self.received)

	def changed(self):
		return self.reported != self.snapshot()

	def status_update(self, reply = 0, now = None):
		"""
		Build the CopyData payload of a Standby Status Update for the current
		positions and mark them as reported.
		"""
		self.reported = self.snapshot()
		return element.StandbyStatusUpdate(
			self.received, self.flushed, self.applied, pg_clock(now), reply
		).bytes()

class CallableHandler(pg_api.ReplicationHandler):
	"""
	Adapt a function with the signature of `handle_x_log_data`.
	"""
	def __init__(self, callable):
		self.callable = callable

	def handle_x_log_data(self, start_lsn, end_lsn, wal_record, state):
		return self.callable(start_lsn, end_lsn, wal_record, state)

WALData = namedtuple('WALData', ('connection', 'start_lsn', 'end_lsn', 'data'))

class QueueHandler(pg_api.ReplicationHandler):
	"""
	Put a `WALData` for every XLogData into `queue`, anything with a ``put``
	method. The consumer acknowledges the positions it has processed with
	`pqsession.driver.pq3.Connection.standby_status_update`.
	"""
	def __init__(self, queue, connection = None):
		self.queue = queue
		self.connection = connection

	def handle_x_log_data(self, start_lsn, end_lsn, wal_record, state):
		self.queue.put(WALData(self.connection, start_lsn, end_lsn, wal_record))
		return (None, None, state)

def adapt_handler(handler, connection = None):
	if isinstance(handler, pg_api.ReplicationHandler):
		return handler
	if hasattr(handler, 'handle_x_log_data'):
		return handler
	if hasattr(handler, 'put'):
		return QueueHandler(handler, connection)
	if callable(handler):
		return CallableHandler(handler)
	raise TypeError("cannot use %r as a replication handler" %(handler,))

class ReplicationStream(object):
	"""
	Client side of a streaming replication session.

	`handle` takes the payload of each CopyData received and returns the
	payloads to send back, `feedback` produces the periodic status update.
	"""
	def __init__(self,
		handler : "`pqsession.api.ReplicationHandler`",
		handler_state = None,
		start = 0,
		align_lsn = False,
		status_interval = 10.0,
		clock = time.monotonic,
	):
		self.handler = handler
		self.handler_state = handler_state
		self.state = ReplicationState(start)
		self.align_lsn = align_lsn
		self.status_interval = status_interval
		self.clock = clock
		self.last_status = clock()

	def status_update(self, reply = 0):
		self.last_status = self.clock()
		return self.state.status_update(reply)

	def acknowledge(self, flushed, applied):
		self.state.acknowledge(flushed, applied)
		return self.status_update()

	def handle(self, data):
		typ = data[0:1]
		if typ == element.XLogData.type:
			msg = element.XLogData.parse(data)
			self.state.receive(msg.start)
			try:
				flushed, applied, self.handler_state = self.handler.handle_x_log_data(
					msg.start, msg.end, msg.data, self.handler_state
				)
			except Exception:
				# The stream stays up; the positions are left unchanged.
				sys.excepthook(*sys.exc_info())
			else:
				self.state.acknowledge(flushed, applied)
			return ()
		elif typ == element.PrimaryKeepalive.type:
			msg = element.PrimaryKeepalive.parse(data)
			if msg.reply:
				if self.align_lsn:
					self.state.align()
				return (self.status_update(),)
			return ()
		# Unknown message types are ignored.
		return ()

	def next_feedback(self):
		'Seconds until the next periodic status update is due.'
		if self.status_interval is None:
			return None
		return max(0, self.last_status + self.status_interval - self.clock())

	def feedback(self):
		"""
		The periodic status update, when it is due and the positions changed
		since the last one.
		"""
		if self.status_interval is None:
			return ()
		if self.clock() - self.last_status < self.status_interval:
			return ()
		if not self.state.changed():
			self.last_status = self.clock()
			return ()
		return (self.status_update(),)
