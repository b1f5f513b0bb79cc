##
# pqsession root package
##
"""
pqsession is the session layer of a PostgreSQL client: the extended query
protocol with automatic recovery from errors, prepared statement caching,
pipelined batches, transactions, COPY FROM STDIN and logical replication.

	>>> import pqsession
	>>> db = pqsession.connect(host = 'localhost', database = 'app').unwrap()
	>>> db.equery("SELECT $1::int", (42,)).unwrap().rows
	[(42,)]

Operations return `pqsession.result.Ok` or `pqsession.result.Err`; `unwrap`
turns an `Err` into a raised exception.
"""
__all__ = [
	'__version__',
	'version',
	'version_info',
	'connect',
]

from .project import version_info, version
__version__ = version

from . import exceptions as pg_exc
from .result import Err

def connect(options = (), **kw):
	"""
	Connect to the server described by `options`, a mapping or a sequence of
	key-value pairs, and the keywords. Defaults and the ``PG*`` environment
	variables fill in what is not given; see
	`pqsession.clientparameters.collect`.

	Returns `Ok(pqsession.driver.pq3.Connection)` or an `Err`.
	"""
	from . import clientparameters
	from . import driver
	try:
		params = clientparameters.collect(options, **kw)
	except pg_exc.Error as err:
		return Err(err)
	return driver.connect(params)

__docformat__ = 'reStructuredText'
