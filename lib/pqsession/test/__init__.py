##
# .test
##
"""
Tests of the session layer. Tests that need a server use the scripted
backend of `pqsession.test.support`; none needs a PostgreSQL installation.
"""
