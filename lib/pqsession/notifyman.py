##
# .notifyman - Receive and manage asynchronous events.
##
"""
Notification Management Tools

`NotificationManager` is an event receiver: given to connections as their
``receiver``, it collects the NOTIFYs, notices and COPY errors of those
connections and provides an iterator for an event loop over them.

	>>> import pqsession
	>>> from pqsession.notifyman import NotificationManager
	>>> nm = NotificationManager(timeout = 10) # idle events every 10 seconds
	>>> db = pqsession.connect(receiver = nm).unwrap()
	>>> db.squery("LISTEN jobs")
	>>> for x in nm:
	...  if x is None:
	...   # idle event
	...   ...
	...  db, notifies = x
	...  for channel, payload, pid in notifies:
	...   ...

Notices and COPY errors are available from the `messages` queue when the
manager was created with ``keep_messages = True``; otherwise notices are
emitted to `pqsession.sys.msghook`.
"""
import queue
from time import monotonic

from . import api as pg_api

class NotificationManager(object):
	"""
	A receiver for the asynchronous events of a set of connections.

	Instances are safe to use from the connections' actor threads and one
	consuming thread.
	"""
	__slots__ = (
		'incoming',
		'messages',
		'timeout',
		'keep_messages',
		'_last_time',
	)

	def __init__(self, timeout = None, keep_messages = False):
		self.settimeout(timeout)
		self.keep_messages = keep_messages
		self.incoming = queue.Queue()
		self.messages = queue.Queue()
		self._last_time = None

	def settimeout(self, value):
		"""
		Set the maximum duration, in seconds, between idle events. `None`
		disables idle events.
		"""
		if value is not None and value < 0:
			raise ValueError("cannot set timeout less than zero")
		self.timeout = value

	def gettimeout(self):
		return self.timeout

	def put(self, event):
		if isinstance(event, pg_api.Notification):
			self.incoming.put(event)
		elif self.keep_messages:
			self.messages.put(event)
		elif isinstance(event, pg_api.Notice):
			event.message.emit()
		else:
			# CopyError
			self.messages.put(event)

	def _pull(self, wait):
		"""
		Group the notifications available by connection, in arrival order.
		"""
		try:
			first = self.incoming.get(True, wait) if wait != 0 else self.incoming.get_nowait()
		except queue.Empty:
			return None
		pulled = [first]
		while True:
			try:
				pulled.append(self.incoming.get_nowait())
			except queue.Empty:
				break
		return pulled

	def __iter__(self):
		return self

	def __next__(self, time = monotonic):
		"""
		Produce ``(connection, [(channel, payload, pid), ...])`` for the
		connection of the oldest notification, or `None` when the timeout
		elapsed without notifications.
		"""
		while True:
			if self.timeout is not None:
				if self._last_time is None:
					self._last_time = time()
				wait = max(0, self.timeout - (time() - self._last_time))
			else:
				wait = None

			pulled = self._pull(wait)
			if pulled is None:
				if self.timeout is not None:
					# idle event
					self._last_time = time()
					return None
				continue
			self._last_time = time()

			db = pulled[0].connection
			notifies = [
				(x.channel, x.payload, x.pid) for x in pulled if x.connection is db
			]
			# Requeue the notifications of other connections.
			for x in pulled:
				if x.connection is not db:
					self.incoming.put(x)
			return (db, notifies)
