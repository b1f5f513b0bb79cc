##
# .test.testall
##
import unittest

from .test_result import *
from .test_exceptions import *
from .test_string import *
from .test_protocol import *
from .test_types import *
from .test_clientparameters import *
from .test_copyman import *
from .test_replication import *
from .test_notifyman import *

# Scripted server; no cluster required.
from .test_driver import *

if __name__ == '__main__':
	unittest.main()
