##
# .driver package
##
"""
Driver package providing the session interface to a PostgreSQL server.
"""
__all__ = ['Connection', 'connect']

from .pq3 import Connection

def connect(parameters):
	"""
	Establish a connection using `parameters`, a
	`pqsession.clientparameters.Parameters`. Returns `Ok(Connection)`; on
	failure the connection is closed and its `Err` returned.
	"""
	c = Connection(parameters)
	r = c.connect()
	if r.is_err():
		c.close()
	return r
