##
# .api - interface elements of a session
##
"""
The values exchanged with a session and the capabilities a user can provide.

Values
------

 `Column`
  One result column of a statement.

 `Statement`
  A prepared statement: its name, parameter types and result columns.

 `Reply`
  The outcome of one completed command.

Asynchronous events
-------------------

Events are handed to the receiver registered with the connection, a callable
or an object with a ``put`` method like `queue.Queue`:

 `Notification`
  A NOTIFY received by the session.

 `Notice`
  A notice or warning emitted by the server.

 `CopyError`
  The server aborted a COPY FROM STDIN while data was being sent.

 `ReplicationEnd`
  The replication stream ended; `error` is `None` when the server ended it
  normally.

Capabilities
------------

 `ReplicationHandler`
  Consumer of logical replication data.
"""
import abc
from collections import namedtuple

__all__ = [
	'Column',
	'Statement',
	'Reply',
	'Notification',
	'Notice',
	'CopyError',
	'ReplicationEnd',
	'ReplicationHandler',
]

Column = namedtuple('Column', (
	'name', 'type', 'oid', 'size', 'modifier', 'format',
	'table_oid', 'table_attribute',
))
Column.__doc__ = 'Result column description.'

class Statement(object):
	"""
	A prepared statement.

	The empty name is the unnamed statement; it is replaced by the next Parse
	of an unnamed statement.
	"""
	__slots__ = ('name', 'sql', 'parameter_oids', 'parameter_types', 'columns')

	def __init__(self, name, sql, parameter_oids, parameter_types, columns):
		self.name = name
		self.sql = sql
		self.parameter_oids = tuple(parameter_oids)
		self.parameter_types = tuple(parameter_types)
		self.columns = columns

	def __repr__(self):
		return '{mod}.{name}({args})'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			args = ', '.join([repr(getattr(self, x)) for x in self.__slots__])
		)

	def __eq__(self, ob):
		return isinstance(ob, Statement) and all(
			getattr(self, x) == getattr(ob, x) for x in self.__slots__
		)

	def __hash__(self):
		return hash((self.name, self.sql, self.parameter_oids))

	@property
	def column_names(self):
		if self.columns is None:
			return None
		return [x.name for x in self.columns]

class Reply(object):
	"""
	The outcome of a command.

	 command
	  The command of the completion tag, lowercase: ``'select'``,
	  ``'insert'``, ``'commit'``...
	 count
	  Rows affected or returned; `None` when the command has no count.
	 columns
	  The result columns, `None` for commands without a result.
	 rows
	  The rows received, tuples of column values.
	 suspended
	  `True` when the row limit of the Execute was reached before the end of
	  the result; the portal may be executed again.
	"""
	__slots__ = ('command', 'count', 'columns', 'rows', 'suspended')

	def __init__(self, command = None, count = None, columns = None, rows = (), suspended = False):
		self.command = command
		self.count = count
		self.columns = columns
		self.rows = list(rows)
		self.suspended = suspended

	def __repr__(self):
		return '{mod}.{name}({args})'.format(
			mod = type(self).__module__,
			name = type(self).__name__,
			args = ', '.join([
				x + ' = ' + repr(getattr(self, x)) for x in self.__slots__
			])
		)

	def __eq__(self, ob):
		return isinstance(ob, Reply) and all(
			getattr(self, x) == getattr(ob, x) for x in self.__slots__
		)

	@property
	def status(self):
		"""
		The command status in the form returned by
		`pqsession.driver.pq3.Connection.get_cmd_status`.
		"""
		if self.count is None:
			return self.command
		return (self.command, self.count)

Notification = namedtuple('Notification', ('connection', 'pid', 'channel', 'payload'))
Notice = namedtuple('Notice', ('connection', 'message'))
CopyError = namedtuple('CopyError', ('connection', 'error'))
ReplicationEnd = namedtuple('ReplicationEnd', ('connection', 'error'))

class ReplicationHandler(metaclass = abc.ABCMeta):
	"""
	Consumer of the WAL data of a logical replication stream.
	"""

	@abc.abstractmethod
	def handle_x_log_data(self,
		start_lsn : "WAL position of the data",
		end_lsn : "current end of WAL on the server",
		wal_record : "bytes produced by the output plugin",
		state : "the state returned by the previous call",
	) -> ("flushed_lsn", "applied_lsn", "new_state"):
		"""
		Process one XLogData message.

		Return the positions that are now flushed and applied, and the state to
		give to the next call. Positions lower than those already reported are
		ignored.
		"""
