'project information'

#: project name
name = 'pqsession'

#: IRI based project identity
identity = 'https://pypi.org/project/pqsession/'

meaculpa = 'pqsession developers'
abstract = 'PostgreSQL session protocol client: extended query, COPY, logical replication'

version_info = (0, 1, 0)
version = '.'.join(map(str, version_info))
